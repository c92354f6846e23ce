"""User directory — who owns which sessions, and where their output goes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_USER = "default"
USER_PREFIX = "user:"


def resolve_user(
    handshake_id: str | None,
    default_user: str = DEFAULT_USER,
    prefix: str = USER_PREFIX,
) -> str:
    """Map the raw id supplied at connect time to a canonical user id.

    Pure: the same input always gives the same output.  A missing or
    blank id maps to the shared default identity.
    """
    raw = (handshake_id or "").strip() or default_user
    return f"{prefix}{raw}"


@dataclass
class UserEntry:
    """Sessions owned by one user, plus the user's routing binding."""

    user_id: str
    session_ids: list[str] = field(default_factory=list)
    bound_connection: str | None = None
    active: str | None = None  # Last selected session, reported on restore


class UserDirectory:
    """Maps user ids to their ordered sessions and bound connection.

    Session order is insertion order; ``first_session`` is the fallback
    when the active session goes away.
    """

    def __init__(self) -> None:
        self._entries: dict[str, UserEntry] = {}

    def entry(self, user_id: str) -> UserEntry:
        """Get the entry for ``user_id``, creating an empty one if needed."""
        entry = self._entries.get(user_id)
        if entry is None:
            entry = UserEntry(user_id=user_id)
            self._entries[user_id] = entry
        return entry

    def sessions_of(self, user_id: str) -> list[str]:
        entry = self._entries.get(user_id)
        return list(entry.session_ids) if entry else []

    def first_session(self, user_id: str) -> str | None:
        entry = self._entries.get(user_id)
        if entry and entry.session_ids:
            return entry.session_ids[0]
        return None

    def add_session(self, user_id: str, session_id: str) -> None:
        entry = self.entry(user_id)
        if session_id not in entry.session_ids:
            entry.session_ids.append(session_id)

    def remove_session(self, user_id: str, session_id: str) -> bool:
        """Drop a session from the user's list.  Idempotent.

        If it was the user's active session, the first remaining one
        becomes active.  Returns True if something was removed.
        """
        entry = self._entries.get(user_id)
        if entry is None or session_id not in entry.session_ids:
            return False
        entry.session_ids.remove(session_id)
        if entry.active == session_id:
            entry.active = entry.session_ids[0] if entry.session_ids else None
        return True

    def set_active(self, user_id: str, session_id: str | None) -> None:
        self.entry(user_id).active = session_id

    def active_of(self, user_id: str) -> str | None:
        entry = self._entries.get(user_id)
        return entry.active if entry else None

    def bind_connection(self, user_id: str, connection_id: str) -> None:
        """Make ``connection_id`` the user's routing target."""
        entry = self.entry(user_id)
        if entry.bound_connection != connection_id:
            logger.info(
                "User %s bound to connection %s (was %s)",
                user_id,
                connection_id,
                entry.bound_connection,
            )
        entry.bound_connection = connection_id

    def unbind_connection(self, user_id: str, connection_id: str) -> bool:
        """Clear the binding, but only if it still points at ``connection_id``.

        A late unbind from an old connection must not clobber the binding
        of a newer one.  Returns True if the binding was cleared.
        """
        entry = self._entries.get(user_id)
        if entry is None or entry.bound_connection != connection_id:
            return False
        entry.bound_connection = None
        logger.info("User %s unbound from connection %s", user_id, connection_id)
        return True

    def bound_connection(self, user_id: str) -> str | None:
        entry = self._entries.get(user_id)
        return entry.bound_connection if entry else None

    def purge(self, user_id: str) -> UserEntry | None:
        """Forget a user entirely."""
        return self._entries.pop(user_id, None)

    def prune(self, user_id: str) -> bool:
        """Forget a user with no sessions and no bound connection.

        Returns True if the entry was dropped.
        """
        entry = self._entries.get(user_id)
        if entry is None or entry.session_ids or entry.bound_connection:
            return False
        del self._entries[user_id]
        return True

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
