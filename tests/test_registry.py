"""Tests for shellmux.pty.registry.SessionRegistry."""

from __future__ import annotations

import pytest

from shellmux.errors import SpawnError
from shellmux.pty.process import ProcessEvent, ProcessExit, ProcessOutput, SpawnOptions
from shellmux.pty.registry import SessionRegistry
from tests.conftest import FakeSpawner


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, ProcessEvent]] = []

    def __call__(self, session_id: str, event: ProcessEvent) -> None:
        self.calls.append((session_id, event))


@pytest.fixture
def recorder() -> _Recorder:
    return _Recorder()


@pytest.fixture
def registry(recorder: _Recorder, spawner: FakeSpawner) -> SessionRegistry:
    return SessionRegistry(dispatch=recorder, spawner=spawner, history_size=16)


class TestCreate:
    @pytest.mark.asyncio
    async def test_ids_are_monotonic(self, registry: SessionRegistry) -> None:
        a = await registry.create("user:alice")
        b = await registry.create("user:bob")
        assert (a.id, b.id) == ("term_1", "term_2")
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_ids_not_reused_after_remove(self, registry: SessionRegistry) -> None:
        a = await registry.create("user:alice")
        registry.remove(a.id)
        b = await registry.create("user:alice")
        assert b.id == "term_2"

    @pytest.mark.asyncio
    async def test_session_fields(self, registry: SessionRegistry) -> None:
        session = await registry.create("user:alice", shell="/bin/zsh")
        assert session.owner == "user:alice"
        assert session.command == ["/bin/zsh", "-l"]
        assert session.history.capacity == 16
        assert registry.get(session.id) is session

    @pytest.mark.asyncio
    async def test_options_override_defaults(
        self, recorder: _Recorder, spawner: FakeSpawner
    ) -> None:
        registry = SessionRegistry(
            dispatch=recorder,
            spawner=spawner,
            default_options=SpawnOptions(name="xterm", cols=100, rows=30),
        )
        await registry.create("user:alice", options={"rows": 50})
        options = spawner.processes[0].options
        assert (options.name, options.cols, options.rows) == ("xterm", 100, 50)

    @pytest.mark.asyncio
    async def test_default_shell(self, recorder: _Recorder, spawner: FakeSpawner) -> None:
        registry = SessionRegistry(
            dispatch=recorder, spawner=spawner, default_shell="/bin/dash"
        )
        session = await registry.create("user:alice")
        assert session.command[0] == "/bin/dash"

    @pytest.mark.asyncio
    async def test_spawn_failure_registers_nothing(
        self, registry: SessionRegistry, spawner: FakeSpawner
    ) -> None:
        spawner.fail = FileNotFoundError("no such shell")
        with pytest.raises(SpawnError) as excinfo:
            await registry.create("user:alice", shell="/bin/nope")
        assert "no such shell" in str(excinfo.value)
        assert excinfo.value.argv[0] == "/bin/nope"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_invalid_options_are_spawn_failures(
        self, registry: SessionRegistry, spawner: FakeSpawner
    ) -> None:
        with pytest.raises(SpawnError):
            await registry.create("user:alice", options={"cols": -5})
        assert spawner.processes == []
        assert len(registry) == 0


class TestDispatch:
    @pytest.mark.asyncio
    async def test_events_tagged_with_session_id(
        self, registry: SessionRegistry, recorder: _Recorder, spawner: FakeSpawner
    ) -> None:
        await registry.create("user:alice")
        await registry.create("user:alice")
        spawner.processes[1].emit(b"two")
        spawner.processes[0].exit(0)
        assert recorder.calls == [
            ("term_2", ProcessOutput(b"two")),
            ("term_1", ProcessExit(exit_code=0)),
        ]


class TestLookupAndRemove:
    @pytest.mark.asyncio
    async def test_get_unknown(self, registry: SessionRegistry) -> None:
        assert registry.get("term_99") is None

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, registry: SessionRegistry) -> None:
        session = await registry.create("user:alice")
        assert registry.remove(session.id) is session
        assert registry.remove(session.id) is None
        assert session.id not in registry

    @pytest.mark.asyncio
    async def test_list_sessions(self, registry: SessionRegistry) -> None:
        await registry.create("user:alice", shell="/bin/sh")
        (info,) = registry.list_sessions()
        assert info["id"] == "term_1"
        assert info["owner"] == "user:alice"
        assert info["command"] == "/bin/sh -l"
        assert info["status"] == "running"

    @pytest.mark.asyncio
    async def test_kill_all(self, registry: SessionRegistry, spawner: FakeSpawner) -> None:
        await registry.create("user:alice")
        await registry.create("user:bob")
        registry.kill_all()
        assert [p.kill_count for p in spawner.processes] == [1, 1]
