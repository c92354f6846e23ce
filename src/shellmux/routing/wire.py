"""Wire protocol — events exchanged with a connected client.

Each connection owns one ``Wire``: an outbound FIFO the session layer
pushes events onto, and the transport drains in order.  Pushing never
blocks, so output from one session cannot stall another.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    # client -> server
    CREATE_TERMINAL = "create-terminal"
    SWITCH_TERMINAL = "switch-terminal"
    TERMINAL_INPUT = "terminal-input"
    TERMINAL_RESIZE = "terminal-resize"
    CLOSE_TERMINAL = "close-terminal"
    GET_TERMINALS = "get-terminals"
    # server -> client
    TERMINAL_CREATED = "terminal-created"
    TERMINAL_OUTPUT = "terminal-output"
    TERMINAL_HISTORY = "terminal-history"
    TERMINAL_CLOSED = "terminal-closed"
    TERMINAL_SWITCHED = "terminal-switched"
    TERMINALS_RESTORED = "terminals-restored"
    TERMINALS_LIST = "terminals-list"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"event": self.type.value, "data": self.data}


class Wire:
    """Outbound event queue for a single connection.

    Single-producer side (the session manager), single consumer (the
    transport).  ``close()`` enqueues a ``None`` sentinel.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Queue an event.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        self._queue.put_nowait(event)

    def send_created(
        self, session_id: str, is_initial: bool = False, is_restored: bool = False
    ) -> None:
        data: dict[str, Any] = {"sessionId": session_id}
        if is_initial:
            data["isInitial"] = True
        if is_restored:
            data["isRestored"] = True
        self.send(WireEvent(type=EventType.TERMINAL_CREATED, data=data))

    def send_output(self, session_id: str, data: bytes) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINAL_OUTPUT,
                data={"sessionId": session_id, "data": data},
            )
        )

    def send_history(self, session_id: str, history: bytes) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINAL_HISTORY,
                data={"sessionId": session_id, "history": history},
            )
        )

    def send_closed(
        self, session_id: str, exit_code: int | None, signal: int | None
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINAL_CLOSED,
                data={"sessionId": session_id, "exitCode": exit_code, "signal": signal},
            )
        )

    def send_switched(self, session_id: str) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINAL_SWITCHED, data={"sessionId": session_id}
            )
        )

    def send_restored(self, session_ids: list[str], active: str | None) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINALS_RESTORED,
                data={"sessionIds": list(session_ids), "active": active},
            )
        )

    def send_list(self, session_ids: list[str], active: str | None) -> None:
        self.send(
            WireEvent(
                type=EventType.TERMINALS_LIST,
                data={
                    "terminals": [
                        {"id": sid, "isActive": sid == active} for sid in session_ids
                    ],
                    "active": active,
                },
            )
        )

    def send_error(self, message: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"message": message}))

    async def get(self) -> WireEvent | None:
        """Wait for the next event; None means the wire was closed."""
        return await self._queue.get()

    def get_nowait(self) -> WireEvent | None:
        return self._queue.get_nowait()

    def drain(self) -> list[WireEvent]:
        """Pop every queued event without waiting (sentinel excluded)."""
        events: list[WireEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        """Signal the consumer that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed
