"""Session manager — the entry point connections call into.

Composes the registry, the user directory and the connection router:

* on connect, either replays a user's existing sessions (restore) or
  creates their first one;
* forwards input/resize/close requests to sessions the caller may access;
* dispatches process output and exit events to the right connections.

All state lives on the manager instance and is mutated from the event
loop thread only.  ``_dispatch`` is the single place that turns process
events into deliveries.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from shellmux.config import ShellmuxConfig
from shellmux.errors import SpawnError
from shellmux.pty.process import (
    ProcessEvent,
    ProcessExit,
    ProcessOutput,
    Spawner,
    spawn_pty,
)
from shellmux.pty.registry import SessionRegistry
from shellmux.pty.session import Session
from shellmux.routing.directory import UserDirectory, resolve_user
from shellmux.routing.router import Connection, ConnectionRouter, RoutingMode
from shellmux.routing.wire import Wire

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns every session and routes their events to connections."""

    def __init__(
        self,
        config: ShellmuxConfig | None = None,
        spawner: Spawner = spawn_pty,
    ) -> None:
        self.config = config or ShellmuxConfig()
        self.directory = UserDirectory()
        self.router = ConnectionRouter(self.directory, self.config.routing.mode)
        self.registry = SessionRegistry(
            dispatch=self._dispatch,
            spawner=spawner,
            history_size=self.config.terminal.history_size,
            default_shell=self.config.terminal.shell,
            default_options=self.config.spawn_options(),
        )
        # Serializes connect sequences per owner; dropped once nobody holds or awaits it
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        # Killed on an ephemeral disconnect, not yet exited; no longer routed
        self._purged: set[str] = set()

    @property
    def mode(self) -> RoutingMode:
        return self.router.mode

    @property
    def persistent(self) -> bool:
        return self.config.routing.persistent

    def resolve_user(self, handshake_id: str | None) -> str:
        return resolve_user(
            handshake_id,
            default_user=self.config.routing.default_user,
            prefix=self.config.routing.user_prefix,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self, handshake_id: str | None = None, wire: Wire | None = None
    ) -> Connection:
        """Open a connection and run the restore or initial-create sequence."""
        connection = Connection(user_id=self.resolve_user(handshake_id))
        if wire is not None:
            connection.wire = wire
        self.router.open(connection)
        owner = self.router.owner_for(connection)

        async with self._owner_lock(owner):
            if connection.id not in self.router:
                # Disconnected while waiting for the lock
                return connection
            if self.directory.sessions_of(owner):
                self._restore(connection, owner)
                return connection

            self.router.bind(connection)
            try:
                session = await self._create(connection, owner)
            except SpawnError as e:
                logger.error("Initial terminal for %s failed: %s", owner, e)
                connection.wire.send_error(str(e))
                return connection
            for target in self._lifecycle_targets(connection, owner):
                target.wire.send_created(session.id, is_initial=True)
        return connection

    @asynccontextmanager
    async def _owner_lock(self, owner: str) -> AsyncIterator[None]:
        lock = self._owner_locks.setdefault(owner, asyncio.Lock())
        self._lock_users[owner] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[owner] -= 1
            if not self._lock_users[owner]:
                del self._lock_users[owner]
                del self._owner_locks[owner]

    def _restore(self, connection: Connection, owner: str) -> None:
        """Replay existing sessions to ``connection`` and bind it.

        Runs without yielding, so no output can slip in between a history
        snapshot and the bind.
        """
        session_ids = self.directory.sessions_of(owner)
        for session_id in session_ids:
            session = self.registry.get(session_id)
            if session is None:
                continue
            connection.wire.send_created(session_id, is_restored=True)
            history = session.history.snapshot()
            if history:
                connection.wire.send_history(session_id, history)
        self.router.bind(connection)
        active = self.directory.active_of(owner) or self.directory.first_session(owner)
        connection.active_session_id = active
        connection.wire.send_restored(session_ids, active)
        logger.info(
            "Restored %d session(s) for %s on connection %s",
            len(session_ids),
            owner,
            connection.id,
        )

    async def disconnect(self, connection: Connection) -> None:
        """Tear down a connection.

        Sessions keep running unless the manager is in non-persistent
        owner mode and this connection was still the owner's routing
        target, in which case every session of the owner is killed and the
        owner is forgotten.
        """
        owner = self.router.owner_for(connection)
        was_bound = self.router.close(connection)
        if self.persistent or self.mode is RoutingMode.BROADCAST or not was_bound:
            self.directory.prune(owner)
            return
        session_ids = self.directory.sessions_of(owner)
        for session_id in session_ids:
            session = self.registry.get(session_id)
            if session is not None:
                self._purged.add(session_id)
                session.kill()
        self.directory.purge(owner)
        logger.info("Killed %d session(s) of departed %s", len(session_ids), owner)

    # ------------------------------------------------------------------
    # Client commands
    # ------------------------------------------------------------------

    async def create_terminal(
        self,
        connection: Connection,
        shell: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Create a new session for the connection's owner.

        Raises SpawnError if the process could not be started.
        """
        owner = self.router.owner_for(connection)
        session = await self._create(connection, owner, shell, options)
        for target in self._lifecycle_targets(connection, owner):
            target.wire.send_created(session.id)
        return session.id

    async def _create(
        self,
        connection: Connection,
        owner: str,
        shell: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> Session:
        session = await self.registry.create(owner, shell, options)
        self.directory.add_session(owner, session.id)
        self.directory.set_active(owner, session.id)
        connection.active_session_id = session.id
        return session

    def switch_terminal(self, connection: Connection, session_id: str) -> bool:
        """Change which session the connection is displaying.

        Only the requesting connection is told.  In broadcast mode the
        shared active session changes too, but other connections are not
        notified.
        """
        session = self._accessible(connection, session_id)
        if session is None:
            return False
        connection.active_session_id = session_id
        self.directory.set_active(session.owner, session_id)
        connection.wire.send_switched(session_id)
        return True

    def write(
        self, connection: Connection, session_id: str, data: bytes | str
    ) -> bool:
        session = self._accessible(connection, session_id)
        if session is None:
            return False
        session.write(data)
        return True

    def resize(
        self, connection: Connection, session_id: str, cols: int, rows: int
    ) -> bool:
        session = self._accessible(connection, session_id)
        if session is None:
            return False
        session.resize(cols, rows)
        return True

    def close_terminal(self, connection: Connection, session_id: str) -> bool:
        """Request termination.  Cleanup happens when the exit event arrives."""
        session = self._accessible(connection, session_id)
        if session is None:
            return False
        session.kill()
        return True

    def list_terminals(self, connection: Connection) -> tuple[list[str], str | None]:
        """Send the connection its current session list and return it."""
        owner = self.router.owner_for(connection)
        session_ids = self.directory.sessions_of(owner)
        active = self._active_for(connection, owner, session_ids)
        connection.wire.send_list(session_ids, active)
        return session_ids, active

    def _active_for(
        self, connection: Connection, owner: str, session_ids: list[str]
    ) -> str | None:
        if self.mode is RoutingMode.BROADCAST:
            return self.directory.active_of(owner)
        if connection.active_session_id in session_ids:
            return connection.active_session_id
        return self.directory.active_of(owner)

    def _accessible(self, connection: Connection, session_id: str) -> Session | None:
        """The session, if it exists and the connection may act on it."""
        session = self.registry.get(session_id)
        if session is None or not self.router.may_access(connection, session.owner):
            logger.debug(
                "Ignoring command from %s for unknown session %s",
                connection.id,
                session_id,
            )
            return None
        return session

    def _lifecycle_targets(self, requester: Connection, owner: str) -> list[Connection]:
        """Who hears about a created session: the routing targets plus the requester."""
        targets = self.router.targets(owner)
        if requester.id in self.router and all(t.id != requester.id for t in targets):
            targets.append(requester)
        return targets

    # ------------------------------------------------------------------
    # Process events
    # ------------------------------------------------------------------

    def _dispatch(self, session_id: str, event: ProcessEvent) -> None:
        session = self.registry.get(session_id)
        if session is None:
            logger.debug(
                "Dropping %s for removed session %s", type(event).__name__, session_id
            )
            return

        if isinstance(event, ProcessOutput):
            if session_id in self._purged:
                return
            session.history.append(event.data)
            for target in self.router.targets(session.owner):
                target.wire.send_output(session_id, event.data)
        elif isinstance(event, ProcessExit):
            self._on_exit(session, event)

    def _on_exit(self, session: Session, event: ProcessExit) -> None:
        if not session.mark_exited(event.exit_code, event.signal):
            return
        owner = session.owner
        self.registry.remove(session.id)
        if session.id in self._purged:
            self._purged.discard(session.id)
            logger.info("Purged session %s exited", session.id)
            return
        self.directory.remove_session(owner, session.id)
        fallback = self.directory.first_session(owner)
        for viewer in self.router.viewers(owner):
            if viewer.active_session_id == session.id:
                viewer.active_session_id = fallback
        for target in self.router.targets(owner):
            target.wire.send_closed(session.id, event.exit_code, event.signal)
        logger.info(
            "Session %s exited (code=%s, signal=%s)",
            session.id,
            event.exit_code,
            event.signal,
        )
        self.directory.prune(owner)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Kill every session and wait (bounded) for their exits."""
        self.registry.kill_all()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.registry) and loop.time() < deadline:
            await asyncio.sleep(0.05)
        if len(self.registry):
            logger.warning(
                "%d session(s) still running at shutdown", len(self.registry)
            )
        for connection in self.router.connections:
            self.router.close(connection)

    def stats(self) -> dict[str, int]:
        return {
            "sessions": len(self.registry),
            "connections": len(self.router),
            "users": len(self.directory),
        }
