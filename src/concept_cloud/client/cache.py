"""Last known aggregate snapshot, kept across restarts."""

from __future__ import annotations

from typing import Any, Dict, Iterable

from .storage import KeyValueStorage

STATE_KEY = "concept-cloud:last-state:v2"
PROMPTS = ("q1", "q2")


def empty_state(prompts: Iterable[str] = PROMPTS) -> Dict[str, Any]:
    return {name: [] for name in prompts}


def has_entries(state: Any, prompts: Iterable[str] = PROMPTS) -> bool:
    """True if any prompt list in ``state`` is non-empty."""
    if not isinstance(state, dict):
        return False
    return any(isinstance(state.get(name), list) and state.get(name) for name in prompts)


class LocalDisplayCache:
    def __init__(self, storage: KeyValueStorage, key: str = STATE_KEY) -> None:
        self.storage = storage
        self.key = key
        stored = storage.get(key)
        self._state: Dict[str, Any] = stored if isinstance(stored, dict) else empty_state()

    @property
    def state(self) -> Dict[str, Any]:
        return self._state

    def has_data(self) -> bool:
        return has_entries(self._state)

    def replace(self, state: Dict[str, Any]) -> None:
        self._state = state
        self.storage.set(self.key, state)

    def clear(self) -> None:
        self.replace(empty_state())
