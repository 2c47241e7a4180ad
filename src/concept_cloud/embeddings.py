"""Optional semantic matching backed by an external embedding oracle."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterator, Optional, Protocol, Sequence, Tuple

import aiohttp
import numpy as np

from .errors import OracleError
from .logging import get_logger

LOGGER = get_logger(__name__)

EPSILON = 1e-12


class EmbeddingOracle(Protocol):
    """Anything that can turn a phrase into a fixed-length vector."""

    async def embed(self, text: str) -> Sequence[float]:
        ...


def _as_unit_vector(values: Sequence[float]) -> np.ndarray:
    vector = np.asarray(values, dtype="float32").reshape(-1)
    if vector.size == 0 or not np.all(np.isfinite(vector)):
        raise OracleError("Oracle returned an empty or non-finite vector")
    norm = float(np.linalg.norm(vector))
    if norm < EPSILON:
        raise OracleError("Oracle returned a zero vector")
    return vector / norm


def cosine_similarity(left: np.ndarray, right: np.ndarray) -> float:
    denominator = float(np.linalg.norm(left) * np.linalg.norm(right)) + EPSILON
    return float(np.dot(left, right)) / denominator


class HttpEmbeddingOracle:
    """Call a JSON embedding endpoint.

    The request body is ``{"model": ..., "input": text}``. Both
    ``{"embedding": [...]}`` and OpenAI-style ``{"data": [{"embedding": [...]}]}``
    responses are understood.
    """

    def __init__(self, url: str, model: str, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.url = url
        self.model = model
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def embed(self, text: str) -> Sequence[float]:
        session = await self._get_session()
        try:
            async with session.post(self.url, json={"model": self.model, "input": text}) as response:
                response.raise_for_status()
                body: Any = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise OracleError(f"Embedding request failed: {exc}") from exc
        return self._extract(body)

    @staticmethod
    def _extract(body: Any) -> Sequence[float]:
        if isinstance(body, dict):
            if isinstance(body.get("embedding"), list):
                return body["embedding"]
            data = body.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict):
                embedding = data[0].get("embedding")
                if isinstance(embedding, list):
                    return embedding
        raise OracleError("Unexpected embedding response shape")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class EmbeddingCache:
    """Canonical key -> unit vector. Never authoritative for counts."""

    def __init__(self) -> None:
        self._vectors: Dict[str, np.ndarray] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)

    @property
    def dimension(self) -> Optional[int]:
        """Length shared by every cached vector, ``None`` while empty."""
        for vector in self._vectors.values():
            return int(vector.shape[0])
        return None

    def __iter__(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(self._vectors.items())

    def put(self, key: str, vector: np.ndarray) -> None:
        self._vectors[key] = vector

    def clear(self) -> None:
        self._vectors.clear()

    def nearest(self, vector: np.ndarray) -> Tuple[Optional[str], float]:
        best_key: Optional[str] = None
        best_score = -1.0
        for key, cached in self._vectors.items():
            score = cosine_similarity(vector, cached)
            if score > best_score:
                best_key, best_score = key, score
        return best_key, best_score


class SemanticMatcher:
    """Map a literal concept onto a cached key by cosine similarity.

    The oracle call is bounded by ``timeout`` seconds. Any failure degrades
    to returning the literal concept, so a submission never fails here.
    """

    def __init__(self, oracle: EmbeddingOracle, threshold: float = 0.76, timeout: float = 0.9) -> None:
        self.oracle = oracle
        self.threshold = threshold
        self.timeout = timeout

    async def embed_safe(self, text: str, dimension: Optional[int] = None) -> Optional[np.ndarray]:
        """Embed ``text``; ``None`` on timeout, oracle failure or a vector of the wrong length."""
        try:
            raw = await asyncio.wait_for(self.oracle.embed(text), timeout=self.timeout)
            vector = _as_unit_vector(raw)
            if dimension is not None and vector.shape[0] != dimension:
                raise OracleError(f"Expected {dimension} dimensions, got {vector.shape[0]}")
            return vector
        except asyncio.TimeoutError:
            LOGGER.warning("Embedding oracle timed out after %.2fs for %r", self.timeout, text)
        except OracleError as exc:
            LOGGER.warning("Embedding oracle unavailable: %s", exc)
        except Exception:  # noqa: BLE001 - third-party oracles raise anything
            LOGGER.exception("Embedding oracle failed for %r", text)
        return None

    async def resolve(self, concept: str, cache: EmbeddingCache) -> str:
        if concept in cache:
            return concept
        vector = await self.embed_safe(concept, cache.dimension)
        if vector is None:
            return concept
        best_key, best_score = cache.nearest(vector)
        if best_key is not None and best_score >= self.threshold:
            LOGGER.debug("Semantic match %r -> %r (%.3f)", concept, best_key, best_score)
            return best_key
        cache.put(concept, vector)
        return concept
