"""Connection router — decides which live connections receive a session's events."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field

from shellmux.routing.directory import UserDirectory
from shellmux.routing.wire import Wire

logger = logging.getLogger(__name__)

# Owner of every session in broadcast mode: all connections share it.
SHARED_OWNER = "*"


class RoutingMode(enum.StrEnum):
    """Output delivery policy."""

    BROADCAST = "broadcast"  # Every session is shared by every connection
    OWNER = "owner"  # Sessions are private; output goes to the owner's bound connection


@dataclass
class Connection:
    """A live client connection.

    ``active_session_id`` is the session this client is displaying.  It is
    a display hint only: it never affects where output is routed.
    """

    user_id: str
    wire: Wire = field(default_factory=Wire)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    active_session_id: str | None = None


class ConnectionRouter:
    """Tracks open connections and resolves delivery targets.

    In OWNER mode a session's events go to the owner's bound connection
    only, and nowhere if the owner has no bound connection.  In BROADCAST
    mode every open connection receives everything.
    """

    def __init__(self, directory: UserDirectory, mode: RoutingMode) -> None:
        self.directory = directory
        self.mode = mode
        self._connections: dict[str, Connection] = {}

    def open(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        logger.info(
            "Connection %s opened for %s (total=%d)",
            connection.id,
            connection.user_id,
            len(self._connections),
        )

    def close(self, connection: Connection) -> bool:
        """Forget a connection and release its binding if it still holds it.

        Returns True if the connection was its owner's routing target.
        """
        self._connections.pop(connection.id, None)
        connection.wire.close()
        unbound = self.directory.unbind_connection(
            self.owner_for(connection), connection.id
        )
        logger.info(
            "Connection %s closed (remaining=%d)",
            connection.id,
            len(self._connections),
        )
        return unbound

    def bind(self, connection: Connection) -> None:
        """Make ``connection`` the routing target for its owner."""
        self.directory.bind_connection(self.owner_for(connection), connection.id)

    def owner_for(self, connection: Connection) -> str:
        """The session owner a connection acts as."""
        if self.mode is RoutingMode.BROADCAST:
            return SHARED_OWNER
        return connection.user_id

    def may_access(self, connection: Connection, owner: str) -> bool:
        return self.owner_for(connection) == owner

    def targets(self, owner: str) -> list[Connection]:
        """Connections that should receive events for sessions of ``owner``."""
        if self.mode is RoutingMode.BROADCAST:
            return list(self._connections.values())
        bound = self.directory.bound_connection(owner)
        if bound is None:
            return []
        connection = self._connections.get(bound)
        return [connection] if connection is not None else []

    def viewers(self, owner: str) -> list[Connection]:
        """Every open connection acting as ``owner``, bound or not."""
        return [c for c in self._connections.values() if self.owner_for(c) == owner]

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
