"""Client-side state machine: offline outbox, optimistic acks, anti-erasure.

Everything here runs on one event loop. Connectivity callbacks come from a
transport (see :mod:`concept_cloud.client.transport`), snapshots from the
server's ``state:update`` pushes and submissions from the UI.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from ..config import ClientConfig
from ..errors import TransportError
from ..logging import get_logger
from ..protocol import ADMIN_RESET, STATE_REQUEST
from .cache import LocalDisplayCache, has_entries
from .outbox import Outbox

LOGGER = get_logger(__name__)


class ClientTransport(Protocol):
    @property
    def connected(self) -> bool:
        ...

    async def emit(self, event: str, payload: Any) -> "asyncio.Future[Any]":
        """Hand a frame to the connection and return a future for its ack.

        Raises :class:`TransportError` when the frame could not be handed over.
        """
        ...


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class DisplayStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECT_ERROR = "connect-error"
    RECONNECTING = "reconnecting"
    STALE = "stale-but-connected"


class SubmitStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    ERROR = "error"
    LOCAL_ONLY = "local-only"


class ResilientClient:
    def __init__(
        self,
        transport: ClientTransport,
        outbox: Outbox,
        cache: LocalDisplayCache,
        config: Optional[ClientConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_render: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_status: Optional[Callable[[DisplayStatus], None]] = None,
    ) -> None:
        self.transport = transport
        self.outbox = outbox
        self.cache = cache
        self.config = config or ClientConfig()
        self._clock = clock
        self._on_render = on_render
        self._on_status = on_status
        self.state = ConnectionState.DISCONNECTED
        self.status = DisplayStatus.DISCONNECTED
        self.last_disconnect_at: Optional[float] = None
        self.allow_empty_until = 0.0
        self._flush_lock = asyncio.Lock()

    # Connectivity ----------------------------------------------------------------
    async def on_connect(self) -> int:
        """Enter ``connected`` and replay the outbox; return how many entries were sent."""
        self.state = ConnectionState.CONNECTED
        self._set_status(DisplayStatus.CONNECTED)
        return await self.flush_outbox()

    on_reconnect = on_connect

    def on_disconnect(self, reason: str = "") -> None:
        LOGGER.info("Disconnected: %s", reason or "unknown")
        self.last_disconnect_at = self._clock()
        self.state = ConnectionState.DISCONNECTED
        self._set_status(DisplayStatus.DISCONNECTED)

    def on_connect_error(self, error: Any = None) -> None:
        LOGGER.info("Connection error: %s", error)
        self.last_disconnect_at = self._clock()
        self.state = ConnectionState.DISCONNECTED
        self._set_status(DisplayStatus.CONNECT_ERROR)

    def on_reconnect_attempt(self) -> None:
        self.state = ConnectionState.RECONNECTING
        self._set_status(DisplayStatus.RECONNECTING)

    async def flush_outbox(self) -> int:
        """Resend queued entries oldest first.

        An entry leaves the outbox once the transport accepted it; a missing
        ack is not a failure. The first hard failure stops the flush so the
        remaining entries keep their order.
        """
        sent = 0
        async with self._flush_lock:
            for entry in self.outbox.entries():
                if not self.transport.connected:
                    break
                try:
                    await self.transport.emit(entry.event, entry.payload)
                except TransportError as exc:
                    LOGGER.warning("Outbox flush stopped at %s: %s", entry.id, exc)
                    break
                self.outbox.remove(entry.id)
                sent += 1
        if sent:
            LOGGER.info("Replayed %d queued submissions", sent)
        return sent

    # Snapshots -------------------------------------------------------------------
    def recently_disconnected(self) -> bool:
        if self.last_disconnect_at is None:
            return False
        return self._clock() - self.last_disconnect_at < self.config.anti_erasure_window

    def in_reset_grace(self) -> bool:
        return self._clock() < self.allow_empty_until

    def on_snapshot(self, payload: Any) -> bool:
        """Apply an incoming snapshot; return ``False`` if it was discarded."""
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed snapshot")
            return False
        incoming_empty = not has_entries(payload)
        if incoming_empty and self.cache.has_data() and not self.in_reset_grace() and self.recently_disconnected():
            meta = payload.get("meta")
            reason = meta.get("reason") if isinstance(meta, dict) else None
            LOGGER.warning("Ignoring empty snapshot (%s) right after a reconnect; keeping cached data", reason)
            self._set_status(DisplayStatus.STALE)
            self._render()
            return False
        self.cache.replace(payload)
        if self.state is ConnectionState.CONNECTED and self.status is DisplayStatus.STALE and not incoming_empty:
            self._set_status(DisplayStatus.CONNECTED)
        self._render()
        return True

    # Outbound --------------------------------------------------------------------
    async def submit(self, event: str, payload: Any) -> SubmitStatus:
        if not self.transport.connected:
            self.outbox.enqueue(event, payload)
            return SubmitStatus.QUEUED
        try:
            ack = await self.transport.emit(event, payload)
        except TransportError as exc:
            LOGGER.warning("Send failed, queueing %s: %s", event, exc)
            self.outbox.enqueue(event, payload)
            return SubmitStatus.QUEUED
        return await self._await_ack(ack)

    async def request_reset(self) -> SubmitStatus:
        """Clear the local view and ask the server to reset.

        Opens the grace window during which an empty snapshot is authoritative.
        """
        self.allow_empty_until = self._clock() + self.config.reset_grace_window
        self.cache.clear()
        self._render()
        if not self.transport.connected:
            return SubmitStatus.LOCAL_ONLY
        try:
            ack = await self.transport.emit(ADMIN_RESET, None)
        except TransportError as exc:
            LOGGER.warning("Reset not delivered: %s", exc)
            return SubmitStatus.LOCAL_ONLY
        return await self._await_ack(ack)

    async def request_state(self) -> bool:
        if not self.transport.connected:
            return False
        try:
            await self.transport.emit(STATE_REQUEST, None)
        except TransportError:
            return False
        return True

    async def _await_ack(self, ack: "asyncio.Future[Any]") -> SubmitStatus:
        # the future is left alone on timeout, so a late ack resolves nothing
        done, _ = await asyncio.wait({ack}, timeout=self.config.optimistic_ack_seconds)
        if not done or ack.cancelled():
            return SubmitStatus.SENT
        exc = ack.exception()
        if exc is not None:
            LOGGER.debug("Ack failed (%s); assuming sent", exc)
            return SubmitStatus.SENT
        result = ack.result()
        if isinstance(result, dict) and result.get("ok") is False:
            LOGGER.warning("Server rejected submission: %s", result.get("reason"))
            return SubmitStatus.ERROR
        return SubmitStatus.SENT

    # Presentation ----------------------------------------------------------------
    def _set_status(self, status: DisplayStatus) -> None:
        self.status = status
        if self._on_status is not None:
            self._on_status(status)

    def _render(self) -> None:
        if self._on_render is not None:
            self._on_render(self.cache.state)
