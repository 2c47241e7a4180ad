"""Token-set overlap matching against already known canonical keys."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Iterable, Optional, Tuple


def key_tokens(key: str) -> FrozenSet[str]:
    """Split a canonical key on its separators into a token set."""
    return frozenset(part for part in str(key or "").split(" ") if part)


def jaccard(left: AbstractSet[str], right: AbstractSet[str]) -> float:
    """Return ``|left & right| / |left | right|`` (``0.0`` for two empty sets)."""
    inter = len(left & right)
    union = len(left) + len(right) - inter
    return inter / union if union else 0.0


@dataclass
class SimilarityMatcher:
    """Reuse the closest existing key when its Jaccard score clears ``threshold``."""

    threshold: float = 0.60

    def best(self, tokens: Iterable[str], existing: Iterable[str]) -> Tuple[Optional[str], float]:
        candidate = frozenset(tokens)
        best_key: Optional[str] = None
        best_score = 0.0
        for key in existing:
            score = jaccard(candidate, key_tokens(key))
            if score > best_score:
                best_key, best_score = key, score
        return best_key, best_score

    def match(self, tokens: Iterable[str], existing: Iterable[str]) -> Optional[str]:
        key, score = self.best(tokens, existing)
        if key is not None and score >= self.threshold:
            return key
        return None
