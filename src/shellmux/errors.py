"""Exceptions raised by shellmux."""

from __future__ import annotations


class ShellmuxError(Exception):
    """Base class for shellmux errors."""


class SpawnError(ShellmuxError):
    """A terminal process could not be started.

    No session is registered when this is raised.
    """

    def __init__(self, argv: list[str], reason: str) -> None:
        self.argv = argv
        self.reason = reason
        super().__init__(f"Failed to spawn {' '.join(argv) or '<none>'}: {reason}")
