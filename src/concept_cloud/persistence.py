"""Best-effort, debounced persistence of the aggregate store."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import PersistenceError
from .logging import get_logger
from .store import AggregateStore
from .utils.io import load_json, save_json

LOGGER = get_logger(__name__)


class StateFile:
    """JSON file holding ``{q1: [...], q2: [...], meta: {...}}``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def save(self, record: Dict[str, Any]) -> None:
        try:
            save_json(self.path, record)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = load_json(self.path)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"Expected a mapping in {self.path}")
        return data


def restore(store: AggregateStore, state_file: StateFile) -> bool:
    """Load ``state_file`` into ``store``; return ``False`` if nothing was loaded."""
    try:
        record = state_file.load()
    except PersistenceError:
        LOGGER.exception("Ignoring unreadable state file")
        return False
    if record is None:
        return False
    store.load_record(record)
    return True


class DebouncedPersister:
    """Coalesce store mutations into a bounded number of writes.

    :meth:`schedule` starts one background task that waits
    ``debounce_seconds`` and writes the latest record. Calls made while a
    write is pending are absorbed by it; a mutation that lands during the
    write itself schedules another cycle once it finishes. Writes never
    overlap. Failed writes are logged and keep the state dirty so the next
    cycle, or :meth:`flush`, tries again.
    """

    def __init__(self, store: AggregateStore, state_file: StateFile, debounce_seconds: float = 0.5) -> None:
        self.store = store
        self.state_file = state_file
        self.debounce_seconds = debounce_seconds
        self.dirty = False
        self.writes = 0
        self._pending: Optional[asyncio.Task[None]] = None
        self._waiting = False
        self._lock = asyncio.Lock()

    def attach(self) -> "DebouncedPersister":
        self.store.add_listener(lambda _reason: self.schedule())
        return self

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(self) -> None:
        self.dirty = True
        if self.pending:
            return
        self._waiting = True
        self._pending = asyncio.get_running_loop().create_task(self._delayed_write())

    async def _delayed_write(self) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        finally:
            self._waiting = False
        written = await self._write()
        if written and self.dirty:
            self._pending = None
            self.schedule()

    async def _write(self) -> bool:
        async with self._lock:
            record = self.store.to_record()
            self.dirty = False
            try:
                await asyncio.to_thread(self.state_file.save, record)
            except PersistenceError:
                self.dirty = True
                LOGGER.exception("Persisting state failed; in-memory state remains authoritative")
                return False
        self.writes += 1
        LOGGER.debug("Persisted state version %s", record["meta"]["version"])
        return True

    async def flush(self) -> bool:
        """Write the latest state now. Used on shutdown.

        A cycle still waiting out its delay is cancelled; one that is
        already writing is allowed to finish first.
        """
        while self.pending:
            assert self._pending is not None
            task = self._pending
            if self._waiting:
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._pending = None
        return await self._write()
