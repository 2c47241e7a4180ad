"""aiohttp WebSocket client that drives a :class:`ResilientClient`."""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Dict, Optional

import aiohttp

from ..config import ClientConfig
from ..errors import TransportError
from ..logging import get_logger
from ..protocol import ACK, STATE_UPDATE
from .resilience import ResilientClient

LOGGER = get_logger(__name__)


class WebSocketTransport:
    """Reconnecting WebSocket connection with ack correlation by frame id."""

    def __init__(
        self,
        url: str,
        config: Optional[ClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        heartbeat: float = 25.0,
    ) -> None:
        self.url = url
        self.config = config or ClientConfig()
        self.heartbeat = heartbeat
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, "asyncio.Future[Any]"] = {}
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def emit(self, event: str, payload: Any) -> "asyncio.Future[Any]":
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("not connected")
        frame_id = next(self._ids)
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._pending[frame_id] = future
        try:
            await ws.send_json({"event": event, "data": payload, "id": frame_id})
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as exc:
            self._pending.pop(frame_id, None)
            future.cancel()
            raise TransportError(str(exc)) from exc
        return future

    async def run(self, client: ResilientClient) -> None:
        """Connect, pump frames into ``client`` and reconnect until :meth:`close`."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        delay = self.config.reconnect_delay
        attempt = 0
        try:
            while not self._closing:
                if attempt:
                    client.on_reconnect_attempt()
                try:
                    ws = await self._session.ws_connect(self.url, heartbeat=self.heartbeat)
                except (aiohttp.ClientError, OSError) as exc:
                    client.on_connect_error(exc)
                    attempt += 1
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.config.reconnect_delay_max)
                    continue

                self._ws = ws
                delay = self.config.reconnect_delay
                if attempt:
                    await client.on_reconnect()
                else:
                    await client.on_connect()
                reason = await self._read(ws, client)
                self._ws = None
                self._cancel_pending()
                client.on_disconnect(reason)
                attempt += 1
                if not self._closing:
                    await asyncio.sleep(delay)
        finally:
            self._cancel_pending()
            if self._owns_session and self._session is not None:
                await self._session.close()

    async def _read(self, ws: aiohttp.ClientWebSocketResponse, client: ResilientClient) -> str:
        async for message in ws:
            if message.type != aiohttp.WSMsgType.TEXT:
                if message.type == aiohttp.WSMsgType.ERROR:
                    LOGGER.warning("WebSocket error: %s", ws.exception())
                continue
            try:
                frame = json.loads(message.data)
            except ValueError:
                LOGGER.warning("Ignoring non-JSON frame")
                continue
            if not isinstance(frame, dict):
                continue
            event = frame.get("event")
            if event == ACK:
                future = self._pending.pop(frame.get("id"), None)
                if future is not None and not future.done():
                    future.set_result(frame.get("data"))
            elif event == STATE_UPDATE:
                client.on_snapshot(frame.get("data"))
        return f"closed ({ws.close_code})"

    def _cancel_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
