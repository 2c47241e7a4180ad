"""Concept Cloud package."""

from .canonicalizer import Canonicalizer, Resolution
from .config import AppConfig, load_config
from .ingress import IngressHandler, RateLimiter
from .normalizer import Normalizer, normalize
from .store import AggregateEntry, AggregateStore, Snapshot

__all__ = [
    "AggregateEntry",
    "AggregateStore",
    "AppConfig",
    "Canonicalizer",
    "IngressHandler",
    "Normalizer",
    "RateLimiter",
    "Resolution",
    "Snapshot",
    "load_config",
    "normalize",
]

__version__ = "0.1.0"
