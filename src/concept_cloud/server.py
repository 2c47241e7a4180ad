"""aiohttp WebSocket binding for the ingress handler and broadcaster.

Frames are JSON objects. Clients send ``{"event", "data", "id"?}``; when
``id`` is present the server answers ``{"event": "ack", "id", "data"}``.
Snapshots arrive as ``{"event": "state:update", "data": {...}}``.
"""

from __future__ import annotations

import json
import uuid
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from .broadcast import SyncBroadcaster
from .canonicalizer import Canonicalizer
from .config import AppConfig
from .embeddings import EmbeddingOracle
from .ingress import IngressHandler, Session
from .logging import get_logger
from .persistence import DebouncedPersister, StateFile, restore
from .protocol import ACK
from .store import AggregateStore

LOGGER = get_logger(__name__)


class WebSocketConnection:
    """Adapts an aiohttp WebSocket to the broadcaster's ``Connection`` protocol."""

    def __init__(self, ws: web.WebSocketResponse, connection_id: Optional[str] = None) -> None:
        self.ws = ws
        self.id = connection_id or uuid.uuid4().hex[:12]

    async def send(self, event: str, data: Any) -> None:
        await self.ws.send_json({"event": event, "data": data})

    async def send_ack(self, frame_id: Any, data: Dict[str, Any]) -> None:
        await self.ws.send_json({"event": ACK, "id": frame_id, "data": data})


@dataclass
class AppState:
    config: AppConfig
    store: AggregateStore
    broadcaster: SyncBroadcaster
    ingress: IngressHandler
    persister: Optional[DebouncedPersister] = None


STATE_KEY = web.AppKey("concept_cloud_state", AppState)
SOCKETS_KEY = web.AppKey("concept_cloud_sockets", weakref.WeakSet)


async def _dispatch(state: AppState, session: Session, connection: WebSocketConnection, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-JSON frame from %s", connection.id)
        return
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        LOGGER.warning("Ignoring malformed frame from %s", connection.id)
        return

    frame_id = frame.get("id")
    respond = None
    if frame_id is not None:
        async def respond(ack: Dict[str, Any]) -> None:
            await connection.send_ack(frame_id, ack)

    await state.ingress.handle(session, frame["event"], frame.get("data"), respond)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    state = request.app[STATE_KEY]
    ws = web.WebSocketResponse(
        heartbeat=state.config.server.heartbeat_seconds,
        max_msg_size=state.config.server.max_message_bytes,
    )
    await ws.prepare(request)
    request.app[SOCKETS_KEY].add(ws)

    connection = WebSocketConnection(ws)
    session = await state.ingress.connect(connection)
    try:
        async for message in ws:
            if message.type == WSMsgType.TEXT:
                await _dispatch(state, session, connection, message.data)
            elif message.type == WSMsgType.ERROR:
                LOGGER.warning("WebSocket error on %s: %s", connection.id, ws.exception())
    finally:
        state.ingress.disconnect(session, f"close code {ws.close_code}")
        request.app[SOCKETS_KEY].discard(ws)
    return ws


async def _on_startup(app: web.Application) -> None:
    state = app[STATE_KEY]
    state_path = state.config.persistence.state_path
    if state_path is None:
        LOGGER.info("Persistence disabled")
        return
    state_file = StateFile(state_path)
    restore(state.store, state_file)
    state.persister = DebouncedPersister(state.store, state_file, state.config.persistence.debounce_seconds).attach()


async def _on_shutdown(app: web.Application) -> None:
    for ws in list(app[SOCKETS_KEY]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


async def _on_cleanup(app: web.Application) -> None:
    state = app[STATE_KEY]
    await state.ingress.drain()
    if state.persister is not None:
        LOGGER.info("Flushing state before exit")
        await state.persister.flush()
    await state.store.canonicalizer.close()


def build_app(
    config: Optional[AppConfig] = None,
    store: Optional[AggregateStore] = None,
    oracle: Optional[EmbeddingOracle] = None,
) -> web.Application:
    """Create the aiohttp application serving the WebSocket endpoint."""

    config = config or AppConfig()
    store = store or AggregateStore(Canonicalizer.from_config(config.canonicalization, oracle))
    broadcaster = SyncBroadcaster(store)
    ingress = IngressHandler(store, broadcaster, config.ingress)

    app = web.Application()
    app[STATE_KEY] = AppState(config=config, store=store, broadcaster=broadcaster, ingress=ingress)
    app[SOCKETS_KEY] = weakref.WeakSet()
    app.router.add_get(config.server.ws_path, websocket_handler)
    app.on_startup.append(_on_startup)
    app.on_shutdown.append(_on_shutdown)
    app.on_cleanup.append(_on_cleanup)
    return app


def run(config: Optional[AppConfig] = None) -> None:
    """Serve until interrupted; SIGINT/SIGTERM trigger a final state flush."""
    config = config or AppConfig()
    app = build_app(config)
    LOGGER.info("Listening on %s:%d%s", config.server.host, config.server.port, config.server.ws_path)
    web.run_app(app, host=config.server.host, port=config.server.port, print=None)
