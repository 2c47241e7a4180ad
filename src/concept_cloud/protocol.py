"""Wire vocabulary shared by the server and the client layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .utils.text import to_text

STATE_UPDATE = "state:update"
STATE_REQUEST = "state:request"
ADMIN_RESET = "admin:reset"
ACK = "ack"

Q1_SUBMIT = "q1:submit"
Q2_SUBMIT = "q2:submit"

# every alias deployed clients emit
SUBMIT_EVENTS: Dict[str, str] = {
    **{name: "q1" for name in (Q1_SUBMIT, "q1:send", "q1:answers", "q1")},
    **{name: "q2" for name in (Q2_SUBMIT, "q2:send", "q2:answer", "q2")},
}

# namespaces that only take the first item of a payload
SINGLE_ITEM_NAMESPACES = frozenset({"q2"})

REASON_INITIAL = "initial-connection"
REASON_REQUEST = "client-request"
REASON_RESET = "admin-reset"
RATE_LIMIT = "rate-limit"
UNKNOWN_EVENT = "unknown-event"


def update_reason(namespace: str) -> str:
    return f"{namespace}-update"


@dataclass(frozen=True)
class Ack:
    ok: bool
    accepted: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def accept(cls, accepted: Optional[int] = None) -> "Ack":
        return cls(ok=True, accepted=accepted)

    @classmethod
    def reject(cls, reason: str) -> "Ack":
        return cls(ok=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": self.ok}
        if self.accepted is not None:
            data["accepted"] = self.accepted
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class Submission:
    """A decoded submission: one namespace and its trimmed, non-empty items."""

    namespace: str
    items: Tuple[str, ...]

    @property
    def accepted(self) -> int:
        return len(self.items)


def extract_items(payload: Any) -> List[str]:
    """Pull raw items from a loosely shaped payload; unknown shapes yield ``[]``.

    Accepted shapes are a list, ``{"items": [...]}``, ``{"item": "..."}``
    and a bare string.
    """
    if isinstance(payload, list):
        return [to_text(item) for item in payload]
    if isinstance(payload, dict):
        items = payload.get("items")
        if isinstance(items, list):
            return [to_text(item) for item in items]
        item = payload.get("item")
        if isinstance(item, str):
            return [item]
        return []
    if isinstance(payload, str):
        return [payload]
    return []


def decode_submission(namespace: str, payload: Any) -> Submission:
    items = [item.strip() for item in extract_items(payload)]
    items = [item for item in items if item]
    # blank leading entries are skipped, so q2 keeps the first non-empty answer
    if namespace in SINGLE_ITEM_NAMESPACES:
        items = items[:1]
    return Submission(namespace, tuple(items))
