"""Process handles — interactive processes running in a pseudo-terminal.

A process handle exposes ``write``/``resize``/``kill`` and reports what
happens to the process as events passed to a single callback:

* ``ProcessOutput`` for every chunk read from the terminal, in order;
* exactly one ``ProcessExit`` once the process is gone.

The session layer never touches file descriptors directly, so tests can
substitute any object satisfying ``ProcessHandle``.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import sys
import termios
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass
from typing import Callable, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536
EXIT_POLL_INTERVAL = 0.05  # seconds between reap attempts after EOF


@dataclass(frozen=True)
class ProcessOutput:
    """A chunk of terminal output."""

    data: bytes


@dataclass(frozen=True)
class ProcessExit:
    """Terminal event: the process is gone.

    ``signal`` is None when the process exited on its own.
    """

    exit_code: int
    signal: int | None = None


ProcessEvent = Union[ProcessOutput, ProcessExit]
EventSink = Callable[[ProcessEvent], None]


@runtime_checkable
class ProcessHandle(Protocol):
    """The contract a spawned interactive process must satisfy."""

    pid: int

    def write(self, data: bytes | str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def kill(self) -> None: ...


class SpawnOptions(BaseModel):
    """Per-terminal spawn options, as a client may send them."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="xterm-color", description="Value for $TERM")
    cols: int = Field(default=80, ge=1, le=2000)
    rows: int = Field(default=24, ge=1, le=2000)
    cwd: str | None = Field(default=None, description="Working directory")
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )


Spawner = Callable[[list[str], SpawnOptions, EventSink], Awaitable[ProcessHandle]]


def resolve_shell(
    shell: str | None = None,
    platform: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[str]:
    """Pick the command line for a new terminal.

    Fallback chain: explicit ``shell`` -> shell declared in the environment
    -> platform default.  POSIX shells start in login mode so the user's
    profile is loaded; Windows shells get no login flag.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ
    if platform == "win32":
        return [shell or environ.get("COMSPEC") or "cmd.exe"]
    return [shell or environ.get("SHELL") or "/bin/bash", "-l"]


def set_winsize(fd: int, cols: int, rows: int) -> None:
    """Set the window size of the terminal behind ``fd``."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _make_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the PTY slave.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PTYProcess:
    """An interactive process attached to a fresh PTY.

    The process gets its own session and process group
    (``start_new_session``), so ``kill()`` reaches the whole tree.
    The master fd is non-blocking and watched by the event loop itself,
    so an idle terminal holds no thread.  Once the terminal reports EOF
    the process is reaped and a single ``ProcessExit`` follows.

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    def __init__(
        self,
        argv: list[str],
        options: SpawnOptions,
        on_event: EventSink,
    ) -> None:
        self.argv = argv
        self.options = options
        self.pid: int = 0
        self._on_event = on_event
        self._master_fd: int = -1
        self._pgid: int = 0
        self._proc: subprocess.Popen | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._eof = asyncio.Event()
        self._pending = bytearray()  # Input the terminal has not accepted yet
        self._waiter_task: asyncio.Task | None = None
        self._killed = False
        self._exited = False

    async def start(self) -> None:
        """Spawn the process and start forwarding its output.

        Raises OSError if the PTY cannot be opened or the program cannot
        be executed.
        """
        master_fd, slave_fd = pty.openpty()
        env = {**os.environ, "TERM": self.options.name, **self.options.env}
        cwd = self.options.cwd or os.environ.get("HOME") or os.getcwd()

        try:
            set_winsize(slave_fd, self.options.cols, self.options.rows)
            self._proc = subprocess.Popen(
                self.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=_make_controlling_tty,
                env=env,
                cwd=cwd,
            )
        except (OSError, subprocess.SubprocessError):
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self.pid = self._proc.pid
        # start_new_session makes the child a group leader
        self._pgid = self.pid
        os.set_blocking(master_fd, False)
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(master_fd, self._on_readable)
        self._waiter_task = asyncio.create_task(self._wait_exit())

        logger.info(
            "PTY process started: pid=%d cmd=%s", self.pid, " ".join(self.argv)
        )

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once every slave fd is closed
            data = b""
        if not data:
            self._loop.remove_reader(self._master_fd)
            self._eof.set()
            return
        self._emit(ProcessOutput(data))

    async def _wait_exit(self) -> None:
        """Wait for EOF, then reap the process and report the exit."""
        try:
            await self._eof.wait()
            returncode = self._proc.poll()
            while returncode is None:
                await asyncio.sleep(EXIT_POLL_INTERVAL)
                returncode = self._proc.poll()
        finally:
            self._close_master()

        self._exited = True
        if returncode < 0:
            exit_event = ProcessExit(exit_code=0, signal=-returncode)
        else:
            exit_event = ProcessExit(exit_code=returncode)
        logger.info(
            "PTY process %d exited (code=%s, signal=%s)",
            self.pid,
            exit_event.exit_code,
            exit_event.signal,
        )
        self._emit(exit_event)

    def _close_master(self) -> None:
        fd = self._master_fd
        if fd < 0:
            return
        self._master_fd = -1
        self._pending.clear()
        if not self._loop.is_closed():
            self._loop.remove_reader(fd)
            self._loop.remove_writer(fd)
        try:
            os.close(fd)
        except OSError:
            pass

    def _emit(self, event: ProcessEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Error in event callback for pid %d", self.pid)

    def write(self, data: bytes | str) -> None:
        """Queue input for the process.  Never blocks the event loop."""
        if self._exited or self._master_fd < 0:
            return
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self._pending:
            self._pending += data
            return
        try:
            written = os.write(self._master_fd, data)
        except BlockingIOError:
            written = 0
        except OSError as e:
            logger.debug("Write to pid %d failed: %s", self.pid, e)
            return
        if written < len(data):
            self._pending += data[written:]
            self._loop.add_writer(self._master_fd, self._flush_pending)

    def _flush_pending(self) -> None:
        fd = self._master_fd
        try:
            written = os.write(fd, self._pending)
        except BlockingIOError:
            return
        except OSError as e:
            logger.debug("Write to pid %d failed: %s", self.pid, e)
            written = len(self._pending)
        del self._pending[:written]
        if not self._pending:
            self._loop.remove_writer(fd)

    def resize(self, cols: int, rows: int) -> None:
        if self._exited or self._master_fd < 0:
            return
        try:
            set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            logger.debug("Resize of pid %d failed: %s", self.pid, e)

    def kill(self) -> None:
        """Hang up the process group.

        Does not wait: the exit is reported later through ``on_event``.
        """
        if self._killed or self._exited:
            return
        self._killed = True
        try:
            os.killpg(self._pgid, signal.SIGHUP)
            logger.info("Sent SIGHUP to pgid %d", self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)

    @property
    def alive(self) -> bool:
        return self._proc is not None and not self._exited


async def spawn_pty(
    argv: list[str], options: SpawnOptions, on_event: EventSink
) -> PTYProcess:
    """Default spawner: start ``argv`` in a new PTY."""
    process = PTYProcess(argv, options, on_event)
    await process.start()
    return process
