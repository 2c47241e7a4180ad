"""Raw text -> canonical key pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Optional

from .config import CanonicalizationConfig
from .embeddings import EmbeddingCache, EmbeddingOracle, HttpEmbeddingOracle, SemanticMatcher
from .logging import get_logger
from .normalizer import Normalizer
from .rules import RuleClassifier
from .similarity import SimilarityMatcher

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of canonicalizing one answer."""

    key: str
    via: str  # "rule", "similarity", "semantic" or "literal"


class Canonicalizer:
    """Run normalizer, rules, similarity and (optionally) semantic matching in order."""

    def __init__(
        self,
        normalizer: Optional[Normalizer] = None,
        rules: Optional[RuleClassifier] = None,
        similarity: Optional[SimilarityMatcher] = None,
        semantic: Optional[SemanticMatcher] = None,
    ) -> None:
        self.normalizer = normalizer or Normalizer()
        self.rules = rules or RuleClassifier()
        self.similarity = similarity or SimilarityMatcher()
        self.semantic = semantic

    @classmethod
    def from_config(
        cls,
        config: Optional[CanonicalizationConfig] = None,
        oracle: Optional[EmbeddingOracle] = None,
    ) -> "Canonicalizer":
        config = config or CanonicalizationConfig()
        semantic: Optional[SemanticMatcher] = None
        if config.use_embeddings:
            if oracle is None and config.embedding_url:
                oracle = HttpEmbeddingOracle(config.embedding_url, config.embedding_model)
            if oracle is None:
                LOGGER.warning("Embeddings enabled but no oracle configured; semantic matching disabled")
            else:
                semantic = SemanticMatcher(oracle, config.semantic_threshold, config.embedding_timeout)
        return cls(similarity=SimilarityMatcher(config.similarity_threshold), semantic=semantic)

    async def resolve(
        self,
        text: str,
        existing: Collection[str],
        cache: Optional[EmbeddingCache] = None,
    ) -> Optional[Resolution]:
        tokens = self.normalizer.tokens(text)
        if not tokens:
            return None

        key = self.rules.classify(tokens)
        if key is not None:
            return Resolution(key, "rule")

        concept = " ".join(tokens)
        if existing:
            key = self.similarity.match(tokens, existing)
            if key is not None:
                return Resolution(key, "similarity")

        if self.semantic is None or cache is None:
            return Resolution(concept, "literal")
        key = await self.semantic.resolve(concept, cache)
        return Resolution(key, "literal" if key == concept else "semantic")

    async def canonicalize(
        self,
        text: str,
        existing: Collection[str],
        cache: Optional[EmbeddingCache] = None,
    ) -> Optional[str]:
        resolution = await self.resolve(text, existing, cache)
        return None if resolution is None else resolution.key

    async def close(self) -> None:
        """Release the oracle's network resources, if any."""
        close = getattr(self.semantic.oracle, "close", None) if self.semantic is not None else None
        if close is not None:
            await close()
