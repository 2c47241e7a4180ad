"""Versioned per-prompt aggregate counts."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .canonicalizer import Canonicalizer, Resolution
from .embeddings import EmbeddingCache
from .errors import UnknownNamespaceError
from .logging import get_logger
from .utils.text import to_text

LOGGER = get_logger(__name__)

NAMESPACES = ("q1", "q2")
RESET_REASON = "admin-reset"

MutationListener = Callable[[str], None]


@dataclass
class AggregateEntry:
    key: str
    count: int
    label: str

    def to_row(self) -> Dict[str, Any]:
        return {"key": self.key, "count": self.count, "label": self.label}


@dataclass
class Snapshot:
    """Full, ordered read of every namespace at one point in time."""

    version: int
    timestamp: int
    reason: str
    prompts: Dict[str, List[AggregateEntry]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(self.prompts.values())

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "meta": {"version": self.version, "timestamp": self.timestamp, "reason": self.reason}
        }
        for name, entries in self.prompts.items():
            payload[name] = [{"text": entry.label, "count": entry.count} for entry in entries]
        return payload


@dataclass
class _Namespace:
    name: str
    entries: Dict[str, AggregateEntry] = field(default_factory=dict)
    embeddings: EmbeddingCache = field(default_factory=EmbeddingCache)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def ranked(self) -> List[AggregateEntry]:
        # sorted() is stable, so equal counts keep creation order
        return sorted(self.entries.values(), key=lambda entry: entry.count, reverse=True)


class AggregateStore:
    """Owns canonical-key counts, first-seen labels and the state version.

    ``resolve_and_increment`` calls against one namespace are serialized by
    that namespace's lock. The canonical key is fully resolved before any
    field is touched, so a failed lookup never leaves a partial update.
    """

    def __init__(
        self,
        canonicalizer: Optional[Canonicalizer] = None,
        namespaces: Iterable[str] = NAMESPACES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.canonicalizer = canonicalizer or Canonicalizer()
        self._namespaces: Dict[str, _Namespace] = {name: _Namespace(name) for name in namespaces}
        self._clock = clock
        self._version = 0
        self._listeners: List[MutationListener] = []

    # Introspection ---------------------------------------------------------------
    @property
    def version(self) -> int:
        return self._version

    @property
    def namespaces(self) -> List[str]:
        return list(self._namespaces)

    def entries(self, namespace: str) -> List[AggregateEntry]:
        return self._get(namespace).ranked()

    def total(self, namespace: str) -> int:
        return sum(entry.count for entry in self._get(namespace).entries.values())

    def embedding_cache(self, namespace: str) -> EmbeddingCache:
        return self._get(namespace).embeddings

    def add_listener(self, listener: MutationListener) -> None:
        """Register ``listener(reason)`` to be called after every mutation."""
        self._listeners.append(listener)

    # Mutation --------------------------------------------------------------------
    async def resolve_and_increment(self, namespace: str, raw_text: object) -> Optional[str]:
        resolution = await self.resolve_and_increment_detailed(namespace, raw_text)
        return None if resolution is None else resolution.key

    async def resolve_and_increment_detailed(self, namespace: str, raw_text: object) -> Optional[Resolution]:
        space = self._get(namespace)
        label = to_text(raw_text).strip()
        if not label:
            return None
        async with space.lock:
            resolution = await self.canonicalizer.resolve(label, list(space.entries), space.embeddings)
            if resolution is None:
                return None
            entry = space.entries.get(resolution.key)
            if entry is None:
                space.entries[resolution.key] = AggregateEntry(resolution.key, 1, label)
            else:
                entry.count += 1
            self._bump(namespace)
        return resolution

    async def reset(self) -> int:
        """Clear every namespace and embedding cache; return the new version."""
        spaces = list(self._namespaces.values())
        for space in spaces:
            await space.lock.acquire()
        try:
            for space in spaces:
                space.entries.clear()
                space.embeddings.clear()
            self._bump(RESET_REASON)
        finally:
            for space in reversed(spaces):
                space.lock.release()
        return self._version

    def _bump(self, reason: str) -> None:
        self._version += 1
        LOGGER.info("State version %d (reason: %s)", self._version, reason)
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Mutation listener failed")

    # Reads -----------------------------------------------------------------------
    def snapshot(self, reason: str = "snapshot") -> Snapshot:
        return Snapshot(
            version=self._version,
            timestamp=int(self._clock() * 1000),
            reason=reason,
            prompts={name: space.ranked() for name, space in self._namespaces.items()},
        )

    # Persistence layout ----------------------------------------------------------
    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            name: [entry.to_row() for entry in space.entries.values()]
            for name, space in self._namespaces.items()
        }
        record["meta"] = {"version": self._version, "timestamp": int(self._clock() * 1000)}
        return record

    def load_record(self, record: Mapping[str, Any]) -> None:
        """Replace in-memory state with a record produced by :meth:`to_record`."""
        for name, space in self._namespaces.items():
            space.entries.clear()
            space.embeddings.clear()
            rows = record.get(name) or []
            if not isinstance(rows, list):
                continue
            for row in rows:
                if not isinstance(row, Mapping):
                    continue
                key = to_text(row.get("key") or row.get("k")).strip()
                try:
                    count = int(row.get("count") or 0)
                except (TypeError, ValueError):
                    count = 0
                if not key or count < 1:
                    continue
                label = to_text(row.get("label")).strip() or key
                space.entries[key] = AggregateEntry(key, count, label)
        meta = record.get("meta")
        if isinstance(meta, Mapping):
            try:
                version = int(meta.get("version") or 0)
            except (TypeError, ValueError):
                version = 0
            self._version = max(self._version, version)
        LOGGER.info("Loaded state (version %d)", self._version)

    def _get(self, namespace: str) -> _Namespace:
        try:
            return self._namespaces[namespace]
        except KeyError:
            raise UnknownNamespaceError(namespace) from None
