"""PTY sessions — processes, their output history and the session registry.

Every terminal runs in its own pseudo-terminal and process group, keeps a
bounded replay buffer, and is tracked by id until its process exits.
"""

from shellmux.pty.buffer import OutputHistoryBuffer
from shellmux.pty.process import (
    ProcessExit,
    ProcessHandle,
    ProcessOutput,
    PTYProcess,
    SpawnOptions,
    resolve_shell,
    spawn_pty,
)
from shellmux.pty.registry import SessionRegistry
from shellmux.pty.session import Session, SessionStatus

__all__ = [
    "OutputHistoryBuffer",
    "ProcessExit",
    "ProcessHandle",
    "ProcessOutput",
    "PTYProcess",
    "Session",
    "SessionRegistry",
    "SessionStatus",
    "SpawnOptions",
    "resolve_shell",
    "spawn_pty",
]
