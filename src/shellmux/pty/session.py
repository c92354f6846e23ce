"""Terminal session — one process, its output history and its owner."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from shellmux.pty.buffer import OutputHistoryBuffer
from shellmux.pty.process import ProcessHandle

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    """Lifecycle states for a session."""

    RUNNING = "running"
    EXITED = "exited"  # Terminal: no transitions out


@dataclass
class Session:
    """A long-lived terminal owned by one user.

    The session exclusively owns its process handle and its history
    buffer.  Once it has exited, writes, resizes and kills are ignored.
    """

    id: str
    owner: str
    process: ProcessHandle
    command: list[str] = field(default_factory=list)
    history: OutputHistoryBuffer = field(default_factory=OutputHistoryBuffer)
    created: datetime = field(default_factory=lambda: datetime.now(UTC))

    _status: SessionStatus = field(default=SessionStatus.RUNNING, init=False)
    _kill_requested: bool = field(default=False, init=False)
    exit_code: int | None = field(default=None, init=False)
    exit_signal: int | None = field(default=None, init=False)

    def write(self, data: bytes | str) -> None:
        if self._status is SessionStatus.RUNNING:
            self.process.write(data)

    def resize(self, cols: int, rows: int) -> None:
        if self._status is SessionStatus.RUNNING:
            self.process.resize(cols, rows)

    def kill(self) -> None:
        """Ask the process to terminate.  Fire-and-forget, idempotent."""
        if self._status is not SessionStatus.RUNNING or self._kill_requested:
            return
        self._kill_requested = True
        try:
            self.process.kill()
        except Exception:
            logger.exception("Error killing session %s", self.id)

    def mark_exited(self, exit_code: int, exit_signal: int | None) -> bool:
        """Move to EXITED.  Returns False if the session had already exited."""
        if self._status is SessionStatus.EXITED:
            return False
        self._status = SessionStatus.EXITED
        self.exit_code = exit_code
        self.exit_signal = exit_signal
        return True

    @property
    def alive(self) -> bool:
        return self._status is SessionStatus.RUNNING

    @property
    def status(self) -> SessionStatus:
        return self._status
