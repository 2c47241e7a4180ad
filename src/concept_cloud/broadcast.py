"""Push full-state snapshots to connected clients."""

from __future__ import annotations

import asyncio
from typing import Any, List, Protocol, Set

from .logging import get_logger
from .protocol import STATE_UPDATE
from .store import AggregateStore

LOGGER = get_logger(__name__)


class Connection(Protocol):
    """One client connection as seen by the server."""

    id: str

    async def send(self, event: str, data: Any) -> None:
        ...


class SyncBroadcaster:
    """Registry of live connections; every mutation fans out a full snapshot."""

    def __init__(self, store: AggregateStore) -> None:
        self.store = store
        self._connections: Set[Connection] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, connection: Connection) -> None:
        self._connections.add(connection)

    def unregister(self, connection: Connection) -> None:
        self._connections.discard(connection)

    async def send_snapshot(self, connection: Connection, reason: str) -> bool:
        """Send the current snapshot to ``connection`` alone."""
        payload = self.store.snapshot(reason).to_payload()
        try:
            await connection.send(STATE_UPDATE, payload)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Dropping connection %s after failed send: %s", connection.id, exc)
            self.unregister(connection)
            return False
        return True

    async def broadcast(self, reason: str) -> int:
        """Send the current snapshot to everyone; return how many sends succeeded."""
        payload = self.store.snapshot(reason).to_payload()
        targets: List[Connection] = list(self._connections)
        results = await asyncio.gather(
            *(connection.send(STATE_UPDATE, payload) for connection in targets),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                LOGGER.warning("Dropping connection %s after failed broadcast: %s", connection.id, result)
                self.unregister(connection)
            else:
                delivered += 1
        LOGGER.debug("Broadcast %s (version %d) to %d clients", reason, payload["meta"]["version"], delivered)
        return delivered
