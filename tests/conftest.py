"""Shared fixtures: an in-memory stand-in for PTY processes."""

from __future__ import annotations

import asyncio
import itertools

import pytest

from shellmux.config import ShellmuxConfig
from shellmux.manager import SessionManager
from shellmux.pty.process import (
    EventSink,
    ProcessExit,
    ProcessOutput,
    SpawnOptions,
)
from shellmux.routing.router import Connection, RoutingMode

_pids = itertools.count(1000)


class FakeProcess:
    """Records calls; tests drive output and exit by hand.

    With ``echo`` on, ``echo <text>`` input produces ``<text>`` as output.
    """

    def __init__(
        self,
        argv: list[str],
        options: SpawnOptions,
        on_event: EventSink,
        echo: bool = True,
        exit_on_kill: bool = False,
    ) -> None:
        self.argv = argv
        self.options = options
        self.on_event = on_event
        self.echo = echo
        self.exit_on_kill = exit_on_kill
        self.pid = next(_pids)
        self.written: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.kill_count = 0

    def write(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode()
        self.written.append(data)
        if self.echo and data.startswith(b"echo "):
            self.emit(data[5:].rstrip(b"\n") + b"\r\n")

    def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))

    def kill(self) -> None:
        self.kill_count += 1
        if self.exit_on_kill:
            self.exit(0, 1)

    # -- test helpers --

    def emit(self, data: bytes) -> None:
        self.on_event(ProcessOutput(data))

    def exit(self, exit_code: int = 0, signal: int | None = None) -> None:
        self.on_event(ProcessExit(exit_code=exit_code, signal=signal))


class FakeSpawner:
    """Spawner that hands out FakeProcess objects, or fails on demand.

    A non-zero ``delay`` makes each spawn yield to the event loop first.
    """

    def __init__(self, exit_on_kill: bool = False, delay: float = 0.0) -> None:
        self.exit_on_kill = exit_on_kill
        self.delay = delay
        self.processes: list[FakeProcess] = []
        self.fail: Exception | None = None

    async def __call__(
        self, argv: list[str], options: SpawnOptions, on_event: EventSink
    ) -> FakeProcess:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        process = FakeProcess(
            argv, options, on_event, exit_on_kill=self.exit_on_kill
        )
        self.processes.append(process)
        return process


def events(connection: Connection) -> list[tuple[str, dict]]:
    """Drain a connection's wire as (event name, payload) pairs."""
    return [(e.type.value, e.data) for e in connection.wire.drain()]


def make_config(
    mode: RoutingMode = RoutingMode.OWNER,
    persistent: bool = True,
    history_size: int = 100_000,
) -> ShellmuxConfig:
    config = ShellmuxConfig()
    config.routing.mode = mode
    config.routing.persistent = persistent
    config.terminal.history_size = history_size
    return config


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def manager(spawner: FakeSpawner) -> SessionManager:
    return SessionManager(make_config(), spawner=spawner)


@pytest.fixture
def broadcast_manager(spawner: FakeSpawner) -> SessionManager:
    return SessionManager(make_config(mode=RoutingMode.BROADCAST), spawner=spawner)


@pytest.fixture
def ephemeral_manager(spawner: FakeSpawner) -> SessionManager:
    return SessionManager(make_config(persistent=False), spawner=spawner)
