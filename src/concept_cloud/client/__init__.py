"""Participant and moderator side of the synchronization protocol."""

from .cache import LocalDisplayCache
from .outbox import Outbox, OutboxEntry
from .resilience import ClientTransport, ConnectionState, DisplayStatus, ResilientClient, SubmitStatus
from .storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from .transport import WebSocketTransport

__all__ = [
    "ClientTransport",
    "ConnectionState",
    "DisplayStatus",
    "JsonFileStorage",
    "KeyValueStorage",
    "LocalDisplayCache",
    "MemoryStorage",
    "Outbox",
    "OutboxEntry",
    "ResilientClient",
    "SubmitStatus",
    "WebSocketTransport",
]
