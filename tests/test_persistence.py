from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path

import pytest

from concept_cloud.errors import PersistenceError
from concept_cloud.persistence import DebouncedPersister, StateFile, restore
from concept_cloud.store import AggregateStore


def test_state_file_round_trip(workspace: Path) -> None:
    state_file = StateFile(workspace / "nested" / "state.json")
    assert state_file.load() is None
    state_file.save({"q1": [], "q2": [], "meta": {"version": 1}})
    assert json.loads(state_file.path.read_text(encoding="utf-8"))["meta"]["version"] == 1
    assert not list(state_file.path.parent.glob("*.tmp"))


def test_unreadable_state_is_ignored_on_restore(workspace: Path) -> None:
    path = workspace / "state.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        StateFile(path).load()
    store = AggregateStore()
    assert restore(store, StateFile(path)) is False
    assert store.version == 0


def test_restore_loads_record(workspace: Path) -> None:
    path = workspace / "state.json"
    path.write_text(json.dumps({"q2": [{"key": "correo", "count": 2, "label": "Mails"}], "meta": {"version": 5}}))
    store = AggregateStore()
    assert restore(store, StateFile(path)) is True
    assert store.total("q2") == 2
    assert store.version == 5


def test_mutations_are_coalesced_into_one_write(workspace: Path) -> None:
    store = AggregateStore()
    state_file = StateFile(workspace / "state.json")
    persister = DebouncedPersister(store, state_file, debounce_seconds=0.05).attach()

    async def scenario() -> None:
        for text in ["correo", "informe", "Control de horas", "correo"]:
            await store.resolve_and_increment("q1", text)
        assert persister.pending
        await asyncio.sleep(0.2)

    asyncio.run(scenario())
    assert persister.writes == 1
    assert not persister.dirty
    saved = state_file.load()
    assert saved is not None
    assert saved["meta"]["version"] == 4
    assert {row["key"]: row["count"] for row in saved["q1"]} == {"correo": 2, "informe": 1, "control hora": 1}


def test_flush_writes_immediately(workspace: Path) -> None:
    store = AggregateStore()
    state_file = StateFile(workspace / "state.json")
    persister = DebouncedPersister(store, state_file, debounce_seconds=60).attach()

    async def scenario() -> bool:
        await store.resolve_and_increment("q1", "correo")
        return await persister.flush()

    assert asyncio.run(scenario()) is True
    assert not persister.pending
    assert state_file.load()["meta"]["version"] == 1


def test_write_failure_keeps_memory_authoritative(workspace: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = workspace / "blocker"
    blocker.write_text("a file, not a directory")
    store = AggregateStore()
    persister = DebouncedPersister(store, StateFile(blocker / "state.json"), debounce_seconds=0.01).attach()

    async def scenario() -> bool:
        await store.resolve_and_increment("q1", "correo")
        await asyncio.sleep(0.1)
        return await persister.flush()

    assert asyncio.run(scenario()) is False
    assert persister.dirty
    assert persister.writes == 0
    assert store.total("q1") == 1
    assert "Persisting state failed" in caplog.text


class SlowStateFile(StateFile):
    """Blocks its first save for ``delay`` seconds."""

    def __init__(self, path: Path, delay: float) -> None:
        super().__init__(path)
        self.delay = delay
        self.saved_versions: list = []

    def save(self, record: dict) -> None:
        if not self.saved_versions:
            time.sleep(self.delay)
        super().save(record)
        self.saved_versions.append(record["meta"]["version"])


def test_flush_waits_for_write_in_progress(workspace: Path) -> None:
    store = AggregateStore()
    state_file = SlowStateFile(workspace / "state.json", delay=0.3)
    persister = DebouncedPersister(store, state_file, debounce_seconds=0.01).attach()

    async def scenario() -> bool:
        await store.resolve_and_increment("q1", "correo")
        await asyncio.sleep(0.05)
        await store.resolve_and_increment("q1", "informe")
        return await persister.flush()

    assert asyncio.run(scenario()) is True
    assert state_file.saved_versions == [1, 2]
    assert state_file.load()["meta"]["version"] == 2


def test_mutation_during_write_is_persisted_by_next_cycle(workspace: Path) -> None:
    store = AggregateStore()
    state_file = SlowStateFile(workspace / "state.json", delay=0.2)
    persister = DebouncedPersister(store, state_file, debounce_seconds=0.01).attach()

    async def scenario() -> None:
        await store.resolve_and_increment("q1", "correo")
        await asyncio.sleep(0.05)
        await store.resolve_and_increment("q1", "informe")
        await asyncio.sleep(0.5)

    asyncio.run(scenario())
    assert persister.writes == 2
    assert not persister.dirty
    assert state_file.load()["meta"]["version"] == 2
