"""Per-connection entry point: acknowledge now, canonicalize later."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from .broadcast import Connection, SyncBroadcaster
from .config import IngressConfig
from .logging import get_logger
from .protocol import (
    ADMIN_RESET,
    RATE_LIMIT,
    REASON_INITIAL,
    REASON_REQUEST,
    REASON_RESET,
    STATE_REQUEST,
    SUBMIT_EVENTS,
    UNKNOWN_EVENT,
    Ack,
    Submission,
    decode_submission,
    update_reason,
)
from .store import AggregateStore

LOGGER = get_logger(__name__)

Responder = Callable[[Dict[str, Any]], Awaitable[None]]


class RateLimiter:
    """Fixed-window counter: at most ``limit`` hits per ``window`` seconds."""

    def __init__(self, limit: int = 25, window: float = 2.5, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._window_start = clock()
        self._used = 0

    def allow(self) -> bool:
        now = self._clock()
        if now - self._window_start >= self.window:
            self._window_start = now
            self._used = 0
        if self._used >= self.limit:
            return False
        self._used += 1
        return True


@dataclass
class Session:
    connection: Connection
    limiter: RateLimiter
    submissions: int = 0
    rejected: int = 0


@dataclass
class IngressHandler:
    """Validate, rate-limit and acknowledge inbound events.

    Acknowledgments go out before any canonicalization work starts; the
    pipeline then runs as a background task and a snapshot is broadcast
    only when at least one item changed the store.
    """

    store: AggregateStore
    broadcaster: SyncBroadcaster
    config: IngressConfig = field(default_factory=IngressConfig)
    clock: Callable[[], float] = time.monotonic
    _tasks: Set["asyncio.Task[Any]"] = field(default_factory=set, init=False, repr=False)

    # Connection lifecycle --------------------------------------------------------
    async def connect(self, connection: Connection) -> Session:
        LOGGER.info("Client connected: %s", connection.id)
        self.broadcaster.register(connection)
        session = Session(connection, RateLimiter(self.config.rate_limit, self.config.rate_window_seconds, self.clock))
        await self.broadcaster.send_snapshot(connection, REASON_INITIAL)
        return session

    def disconnect(self, session: Session, reason: str = "") -> None:
        LOGGER.info("Client disconnected: %s (%s)", session.connection.id, reason or "closed")
        self.broadcaster.unregister(session.connection)

    # Dispatch --------------------------------------------------------------------
    async def handle(self, session: Session, event: str, payload: Any, respond: Optional[Responder] = None) -> None:
        namespace = SUBMIT_EVENTS.get(event)
        if namespace is not None:
            ack, submission = self.accept(session, namespace, payload)
            await self._respond(respond, ack)
            if submission is not None and submission.items:
                self._spawn(self._process(submission), f"process-{namespace}")
        elif event == ADMIN_RESET:
            await self._respond(respond, Ack.accept())
            self._spawn(self._reset(), "reset")
        elif event == STATE_REQUEST:
            await self.broadcaster.send_snapshot(session.connection, REASON_REQUEST)
            await self._respond(respond, Ack.accept())
        else:
            LOGGER.warning("Unknown event %r from %s", event, session.connection.id)
            await self._respond(respond, Ack.reject(UNKNOWN_EVENT))

    def accept(self, session: Session, namespace: str, payload: Any) -> Tuple[Ack, Optional[Submission]]:
        """Apply the rate limit and decode ``payload``; never raises."""
        if not session.limiter.allow():
            session.rejected += 1
            LOGGER.warning("Rate limit hit for %s", session.connection.id)
            return Ack.reject(RATE_LIMIT), None
        session.submissions += 1
        submission = decode_submission(namespace, payload)
        return Ack.accept(submission.accepted), submission

    async def _respond(self, respond: Optional[Responder], ack: Ack) -> None:
        if respond is None:
            return
        try:
            await respond(ack.to_dict())
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not deliver acknowledgment: %s", exc)

    # Background work -------------------------------------------------------------
    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task %s failed", task.get_name(), exc_info=exc)

    async def _process(self, submission: Submission) -> bool:
        changed = False
        for item in submission.items:
            try:
                key = await self.store.resolve_and_increment(submission.namespace, item)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Canonicalization failed for %r", item)
                continue
            changed = changed or key is not None
        if changed:
            await self.broadcaster.broadcast(update_reason(submission.namespace))
        return changed

    async def _reset(self) -> None:
        await self.store.reset()
        await self.broadcaster.broadcast(REASON_RESET)

    async def drain(self) -> None:
        """Wait for every in-flight background task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
