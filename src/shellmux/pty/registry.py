"""Session registry — the authoritative store of live sessions."""

from __future__ import annotations

import itertools
import logging
from subprocess import SubprocessError
from typing import Any, Callable

from pydantic import ValidationError

from shellmux.errors import SpawnError
from shellmux.pty.buffer import DEFAULT_HISTORY_SIZE, OutputHistoryBuffer
from shellmux.pty.process import (
    ProcessEvent,
    SpawnOptions,
    Spawner,
    resolve_shell,
    spawn_pty,
)
from shellmux.pty.session import Session

logger = logging.getLogger(__name__)

Dispatch = Callable[[str, ProcessEvent], None]


class SessionRegistry:
    """Creates, tracks and forgets sessions.

    Ids are assigned monotonically (``term_1``, ``term_2``, ...) and never
    reused within one registry.  Process events are tagged with their
    session id and handed to ``dispatch``; the registry itself makes no
    routing decisions.
    """

    def __init__(
        self,
        dispatch: Dispatch,
        spawner: Spawner = spawn_pty,
        history_size: int = DEFAULT_HISTORY_SIZE,
        default_shell: str | None = None,
        default_options: SpawnOptions | None = None,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._counter = itertools.count(1)
        self._dispatch = dispatch
        self._spawner = spawner
        self._history_size = history_size
        self._default_shell = default_shell
        self._default_options = default_options or SpawnOptions()

    async def create(
        self,
        owner: str,
        shell: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> Session:
        """Spawn a process and register a session for it.

        Raises SpawnError if the process could not be started; nothing is
        registered in that case.
        """
        argv = resolve_shell(shell or self._default_shell)
        try:
            spawn_options = self._default_options.model_copy(
                update=SpawnOptions.model_validate(options or {}).model_dump(
                    exclude_unset=True
                )
            )
        except ValidationError as e:
            raise SpawnError(argv, f"invalid options: {e}") from e

        session_id = f"term_{next(self._counter)}"

        def _on_event(event: ProcessEvent) -> None:
            self._dispatch(session_id, event)

        try:
            process = await self._spawner(argv, spawn_options, _on_event)
        except (OSError, SubprocessError) as e:
            raise SpawnError(argv, str(e)) from e

        session = Session(
            id=session_id,
            owner=owner,
            process=process,
            command=argv,
            history=OutputHistoryBuffer(self._history_size),
        )
        self._sessions[session_id] = session
        logger.info(
            "Session %s created for %s (pid=%s, total=%d)",
            session_id,
            owner,
            getattr(process, "pid", "?"),
            len(self._sessions),
        )
        return session

    def get(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        """Forget a session.  Idempotent."""
        session = self._sessions.pop(session_id, None)
        if session:
            logger.info(
                "Session %s removed (remaining=%d)", session_id, len(self._sessions)
            )
        return session

    def list_sessions(self) -> list[dict[str, Any]]:
        """Describe all live sessions."""
        return [
            {
                "id": s.id,
                "owner": s.owner,
                "command": " ".join(s.command),
                "alive": s.alive,
                "status": s.status.value,
                "history_bytes": len(s.history),
            }
            for s in self._sessions.values()
        ]

    def kill_all(self) -> None:
        """Ask every session to terminate.  Called on shutdown."""
        for session in list(self._sessions.values()):
            session.kill()
        logger.info("Kill requested for all sessions")

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
