"""Tests for shellmux.routing.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

import pytest

from shellmux.routing.wire import EventType, Wire, WireEvent


# ---------------------------------------------------------------------------
# EventType
# ---------------------------------------------------------------------------


class TestEventType:
    def test_protocol_names(self) -> None:
        assert EventType.CREATE_TERMINAL.value == "create-terminal"
        assert EventType.TERMINALS_RESTORED.value == "terminals-restored"
        assert EventType("terminal-input") is EventType.TERMINAL_INPUT

    def test_values_are_kebab_case_names(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower().replace("_", "-")


# ---------------------------------------------------------------------------
# WireEvent
# ---------------------------------------------------------------------------


class TestWireEvent:
    def test_defaults(self) -> None:
        event = WireEvent(type=EventType.GET_TERMINALS)
        assert event.data == {}

    def test_to_message(self) -> None:
        event = WireEvent(type=EventType.TERMINAL_SWITCHED, data={"sessionId": "t"})
        assert event.to_message() == {
            "event": "terminal-switched",
            "data": {"sessionId": "t"},
        }


# ---------------------------------------------------------------------------
# Wire — queueing and closing
# ---------------------------------------------------------------------------


class TestWire:
    def test_fifo(self) -> None:
        wire = Wire()
        for i in range(5):
            wire.send_output("term_1", str(i).encode())
        assert [e.data["data"] for e in wire.drain()] == [b"0", b"1", b"2", b"3", b"4"]

    def test_send_after_close_is_dropped(self) -> None:
        wire = Wire()
        wire.close()
        assert wire.get_nowait() is None
        wire.send_error("too late")
        assert wire.drain() == []
        assert wire.closed

    def test_close_idempotent(self) -> None:
        wire = Wire()
        wire.close()
        wire.close()
        assert wire.get_nowait() is None
        assert wire.drain() == []

    @pytest.mark.asyncio
    async def test_get_waits_for_event(self) -> None:
        wire = Wire()
        getter = asyncio.create_task(wire.get())
        await asyncio.sleep(0)
        assert not getter.done()
        wire.send_switched("term_2")
        event = await asyncio.wait_for(getter, timeout=1)
        assert event is not None
        assert event.type is EventType.TERMINAL_SWITCHED

    @pytest.mark.asyncio
    async def test_get_returns_none_after_close(self) -> None:
        wire = Wire()
        wire.close()
        assert await wire.get() is None


# ---------------------------------------------------------------------------
# Wire — convenience methods
# ---------------------------------------------------------------------------


class TestWireConvenience:
    def test_send_created_flags(self) -> None:
        wire = Wire()
        wire.send_created("a")
        wire.send_created("b", is_initial=True)
        wire.send_created("c", is_restored=True)
        plain, initial, restored = wire.drain()
        assert plain.data == {"sessionId": "a"}
        assert initial.data == {"sessionId": "b", "isInitial": True}
        assert restored.data == {"sessionId": "c", "isRestored": True}

    def test_send_history(self) -> None:
        wire = Wire()
        wire.send_history("term_1", b"$ ls\r\n")
        (event,) = wire.drain()
        assert event.type is EventType.TERMINAL_HISTORY
        assert event.data == {"sessionId": "term_1", "history": b"$ ls\r\n"}

    def test_send_closed(self) -> None:
        wire = Wire()
        wire.send_closed("term_1", 0, 1)
        (event,) = wire.drain()
        assert event.type is EventType.TERMINAL_CLOSED
        assert event.data == {"sessionId": "term_1", "exitCode": 0, "signal": 1}

    def test_send_restored_copies_ids(self) -> None:
        wire = Wire()
        ids = ["term_1", "term_2"]
        wire.send_restored(ids, "term_2")
        ids.append("term_3")
        (event,) = wire.drain()
        assert event.data == {"sessionIds": ["term_1", "term_2"], "active": "term_2"}

    def test_send_list(self) -> None:
        wire = Wire()
        wire.send_list(["term_1", "term_2"], "term_2")
        (event,) = wire.drain()
        assert event.type is EventType.TERMINALS_LIST
        assert event.data == {
            "terminals": [
                {"id": "term_1", "isActive": False},
                {"id": "term_2", "isActive": True},
            ],
            "active": "term_2",
        }

    def test_send_error(self) -> None:
        wire = Wire()
        wire.send_error("boom")
        (event,) = wire.drain()
        assert event.type is EventType.ERROR
        assert event.data["message"] == "boom"
