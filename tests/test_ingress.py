from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from concept_cloud.broadcast import SyncBroadcaster
from concept_cloud.config import IngressConfig
from concept_cloud.ingress import IngressHandler, RateLimiter
from concept_cloud.protocol import Ack, decode_submission, extract_items
from concept_cloud.store import AggregateStore

from conftest import FakeClock, RecordingConnection


@pytest.mark.parametrize(
    "payload, expected",
    [
        (["a", "b"], ["a", "b"]),
        ({"items": ["a", 3]}, ["a", "3"]),
        ({"item": "a"}, ["a"]),
        ("a", ["a"]),
        ({"other": "a"}, []),
        (None, []),
        (42, []),
    ],
)
def test_extract_items_shapes(payload: Any, expected: List[str]) -> None:
    assert extract_items(payload) == expected


def test_decode_submission_trims_and_limits_q2() -> None:
    assert decode_submission("q1", ["  a ", "", "   ", "b"]).items == ("a", "b")
    submission = decode_submission("q2", ["", " first ", "second"])
    assert submission.items == ("first",)
    assert submission.accepted == 1


def test_ack_serialization() -> None:
    assert Ack.accept(2).to_dict() == {"ok": True, "accepted": 2}
    assert Ack.accept().to_dict() == {"ok": True}
    assert Ack.reject("rate-limit").to_dict() == {"ok": False, "reason": "rate-limit"}


def test_rate_limiter_fixed_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(limit=3, window=2.5, clock=clock)
    assert [limiter.allow() for _ in range(4)] == [True, True, True, False]
    clock.advance(2.4)
    assert limiter.allow() is False
    clock.advance(0.2)
    assert limiter.allow() is True


class Harness:
    def __init__(self, clock: FakeClock, limit: int = 25) -> None:
        self.store = AggregateStore()
        self.broadcaster = SyncBroadcaster(self.store)
        self.handler = IngressHandler(self.store, self.broadcaster, IngressConfig(rate_limit=limit), clock)
        self.acks: List[Dict[str, Any]] = []
        self.log: List[str] = []

    async def respond(self, ack: Dict[str, Any]) -> None:
        self.log.append(f"ack v{self.store.version}")
        self.acks.append(ack)


def test_connect_sends_initial_snapshot(clock: FakeClock) -> None:
    harness = Harness(clock)
    connection = RecordingConnection()

    async def scenario() -> None:
        await harness.handler.connect(connection)

    asyncio.run(scenario())
    assert len(harness.broadcaster) == 1
    [snapshot] = connection.snapshots()
    assert snapshot["meta"]["reason"] == "initial-connection"
    assert snapshot["q1"] == [] and snapshot["q2"] == []


def test_ack_is_sent_before_processing(clock: FakeClock) -> None:
    harness = Harness(clock)
    watcher = RecordingConnection("watcher")

    async def scenario() -> None:
        session = await harness.handler.connect(RecordingConnection("sender"))
        await harness.handler.connect(watcher)
        await harness.handler.handle(session, "q1:submit", {"items": ["Responder emails", " ", "informe"]}, harness.respond)
        assert harness.store.version == 0
        await harness.handler.drain()

    asyncio.run(scenario())
    assert harness.acks == [{"ok": True, "accepted": 2}]
    assert harness.log == ["ack v0"]
    assert harness.store.total("q1") == 2
    updates = watcher.snapshots()
    assert [update["meta"]["reason"] for update in updates] == ["initial-connection", "q1-update"]
    assert updates[-1]["meta"]["version"] == 2


def test_event_aliases_and_q2_single_item(clock: FakeClock) -> None:
    harness = Harness(clock)

    async def scenario() -> None:
        session = await harness.handler.connect(RecordingConnection())
        await harness.handler.handle(session, "q2", ["Planificar turnos", "ignored"], harness.respond)
        await harness.handler.handle(session, "q1:answers", "correo", harness.respond)
        await harness.handler.drain()

    asyncio.run(scenario())
    assert harness.acks == [{"ok": True, "accepted": 1}, {"ok": True, "accepted": 1}]
    assert [entry.label for entry in harness.store.entries("q2")] == ["Planificar turnos"]
    assert harness.store.total("q1") == 1


def test_no_broadcast_when_nothing_changes(clock: FakeClock) -> None:
    harness = Harness(clock)
    connection = RecordingConnection()

    async def scenario() -> None:
        session = await harness.handler.connect(connection)
        await harness.handler.handle(session, "q1:submit", ["de la", "para"], harness.respond)
        await harness.handler.handle(session, "q1:submit", {"unexpected": True}, harness.respond)
        await harness.handler.drain()

    asyncio.run(scenario())
    assert harness.acks == [{"ok": True, "accepted": 2}, {"ok": True, "accepted": 0}]
    assert len(connection.snapshots()) == 1
    assert harness.store.version == 0


def test_rate_limited_submissions_are_rejected(clock: FakeClock) -> None:
    harness = Harness(clock, limit=2)

    async def scenario() -> int:
        session = await harness.handler.connect(RecordingConnection())
        for _ in range(3):
            await harness.handler.handle(session, "q1:submit", ["correo"], harness.respond)
        clock.advance(2.5)
        await harness.handler.handle(session, "q1:submit", ["correo"], harness.respond)
        await harness.handler.drain()
        return session.rejected

    assert asyncio.run(scenario()) == 1
    assert [ack["ok"] for ack in harness.acks] == [True, True, False, True]
    assert harness.acks[2]["reason"] == "rate-limit"
    assert harness.store.total("q1") == 3


def test_reset_acks_then_clears_and_broadcasts(clock: FakeClock) -> None:
    harness = Harness(clock)
    connection = RecordingConnection()

    async def scenario() -> None:
        session = await harness.handler.connect(connection)
        await harness.handler.handle(session, "q1:submit", ["correo"], harness.respond)
        await harness.handler.drain()
        await harness.handler.handle(session, "admin:reset", None, harness.respond)
        await harness.handler.drain()

    asyncio.run(scenario())
    assert harness.acks[-1] == {"ok": True}
    last = connection.snapshots()[-1]
    assert last["meta"]["reason"] == "admin-reset"
    assert last["meta"]["version"] == 2
    assert last["q1"] == []


def test_state_request_and_unknown_events(clock: FakeClock) -> None:
    harness = Harness(clock)
    connection = RecordingConnection()

    async def scenario() -> None:
        session = await harness.handler.connect(connection)
        await harness.handler.handle(session, "state:request", None, harness.respond)
        await harness.handler.handle(session, "bogus", None, harness.respond)
        await harness.handler.handle(session, "bogus", None)

    asyncio.run(scenario())
    assert connection.snapshots()[-1]["meta"]["reason"] == "client-request"
    assert harness.acks == [{"ok": True}, {"ok": False, "reason": "unknown-event"}]


def test_failing_connection_is_dropped_from_broadcasts(clock: FakeClock) -> None:
    harness = Harness(clock)
    healthy = RecordingConnection("healthy")
    broken = RecordingConnection("broken")

    async def scenario() -> int:
        session = await harness.handler.connect(healthy)
        await harness.handler.connect(broken)
        broken.fail = True
        await harness.handler.handle(session, "q1:submit", ["correo"])
        await harness.handler.drain()
        return await harness.broadcaster.broadcast("manual")

    assert asyncio.run(scenario()) == 1
    assert len(harness.broadcaster) == 1
    assert healthy.snapshots()[-1]["meta"]["reason"] == "manual"
