"""Bounded, durable queue of submissions made while offline."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from ..logging import get_logger
from .storage import KeyValueStorage

LOGGER = get_logger(__name__)

OUTBOX_KEY = "concept-cloud:outbox:v1"


@dataclass(frozen=True)
class OutboxEntry:
    id: str
    event: str
    payload: Any
    enqueued_at: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["OutboxEntry"]:
        try:
            return cls(
                id=str(data["id"]),
                event=str(data["event"]),
                payload=data.get("payload"),
                enqueued_at=float(data.get("enqueued_at") or 0.0),
            )
        except (KeyError, TypeError, ValueError):
            return None


class Outbox:
    """FIFO of :class:`OutboxEntry`; the oldest entries drop past ``capacity``.

    Every change is written straight through to ``storage`` so a restarted
    client still replays what it queued.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        capacity: int = 50,
        key: str = OUTBOX_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.capacity = capacity
        self.key = key
        self._clock = clock

    def __len__(self) -> int:
        return len(self.entries())

    def entries(self) -> List[OutboxEntry]:
        raw = self.storage.get(self.key, [])
        if not isinstance(raw, list):
            return []
        entries = (OutboxEntry.from_dict(item) for item in raw if isinstance(item, dict))
        return [entry for entry in entries if entry is not None]

    def _save(self, entries: List[OutboxEntry]) -> None:
        self.storage.set(self.key, [asdict(entry) for entry in entries])

    def enqueue(self, event: str, payload: Any) -> OutboxEntry:
        now = self._clock()
        entry = OutboxEntry(id=f"{int(now * 1000)}-{uuid.uuid4().hex[:8]}", event=event, payload=payload, enqueued_at=now)
        entries = self.entries()
        entries.append(entry)
        dropped = len(entries) - self.capacity
        if dropped > 0:
            LOGGER.warning("Outbox full; dropping %d oldest entries", dropped)
            entries = entries[dropped:]
        self._save(entries)
        return entry

    def remove(self, entry_id: str) -> bool:
        entries = self.entries()
        remaining = [entry for entry in entries if entry.id != entry_id]
        if len(remaining) == len(entries):
            return False
        self._save(remaining)
        return True
