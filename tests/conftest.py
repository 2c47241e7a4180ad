from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from concept_cloud.config import AppConfig
from concept_cloud.errors import TransportError


class FakeClock:
    """Manually advanced clock, usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingConnection:
    def __init__(self, connection_id: str = "conn", fail: bool = False) -> None:
        self.id = connection_id
        self.fail = fail
        self.sent: List[tuple] = []

    async def send(self, event: str, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append((event, data))

    def snapshots(self) -> List[Dict[str, Any]]:
        return [data for event, data in self.sent if event == "state:update"]


class FakeTransport:
    """Client transport double.

    ``ack`` is what every emitted frame resolves with; ``None`` leaves the
    ack future pending forever. ``fail_after`` makes every emit past that
    many successful ones raise :class:`TransportError`.
    """

    def __init__(self, connected: bool = True, ack: Optional[Dict[str, Any]] = None) -> None:
        self.connected = connected
        self.ack = ack
        self.fail_after: Optional[int] = None
        self.emitted: List[tuple] = []
        self.futures: List["asyncio.Future[Any]"] = []

    async def emit(self, event: str, payload: Any) -> "asyncio.Future[Any]":
        if not self.connected:
            raise TransportError("not connected")
        if self.fail_after is not None and len(self.emitted) >= self.fail_after:
            raise TransportError("send failed")
        self.emitted.append((event, payload))
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        if self.ack is not None:
            future.set_result(self.ack)
        self.futures.append(future)
        return future


class FakeOracle:
    """Embedding oracle returning fixed vectors per phrase."""

    def __init__(self, vectors: Dict[str, Sequence[float]], delay: float = 0.0, error: Optional[Exception] = None) -> None:
        self.vectors = vectors
        self.delay = delay
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> Sequence[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.vectors.get(text, [0.0, 0.0, 1.0])


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    config = AppConfig()
    config.persistence.state_path = tmp_path / "state.json"
    config.persistence.debounce_seconds = 0.05
    return config


@pytest.fixture
def workspace(tmp_path: Path) -> Iterator[Path]:
    yield tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
