"""Threshold calibration for the similarity matcher."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .logging import get_logger
from .normalizer import Normalizer
from .similarity import jaccard

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class LabeledPair:
    left: str
    right: str
    same: bool

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LabeledPair":
        return cls(left=str(data["left"]), right=str(data["right"]), same=bool(data["same"]))


@dataclass
class ThresholdPoint:
    threshold: float
    precision: float
    recall: float
    f1: float


@dataclass
class CalibrationResult:
    points: Sequence[ThresholdPoint] = field(default_factory=list)
    scores: Sequence[float] = field(default_factory=list)

    @property
    def best(self) -> ThresholdPoint:
        """Highest F1; among ties the strictest threshold."""
        if not self.points:
            raise ValueError("No thresholds evaluated")
        return max(self.points, key=lambda point: (point.f1, point.threshold))

    @property
    def optimal_range(self) -> Tuple[float, float]:
        top = self.best.f1
        tied = [point.threshold for point in self.points if np.isclose(point.f1, top)]
        return min(tied), max(tied)

    def to_dict(self) -> Dict[str, object]:
        low, high = self.optimal_range
        return {
            "best": self.best.__dict__,
            "optimal_range": [low, high],
            "points": [point.__dict__ for point in self.points],
        }

    def to_json(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf8")


@dataclass
class ThresholdSweep:
    """Score labelled pairs with token-set overlap and sweep acceptance thresholds."""

    normalizer: Normalizer = field(default_factory=Normalizer)

    def score(self, pair: LabeledPair) -> float:
        return jaccard(frozenset(self.normalizer.tokens(pair.left)), frozenset(self.normalizer.tokens(pair.right)))

    def run(self, pairs: Iterable[LabeledPair], thresholds: Optional[Sequence[float]] = None) -> CalibrationResult:
        dataset = list(pairs)
        if not dataset:
            raise ValueError("No labelled pairs supplied")
        grid = np.round(np.linspace(0.05, 0.95, 19) if thresholds is None else np.asarray(thresholds, dtype=float), 4)
        scores = np.array([self.score(pair) for pair in dataset], dtype=float)
        labels = np.array([pair.same for pair in dataset], dtype=bool)

        points: List[ThresholdPoint] = []
        for threshold in grid:
            predicted = scores >= threshold
            tp = int(np.sum(predicted & labels))
            fp = int(np.sum(predicted & ~labels))
            fn = int(np.sum(~predicted & labels))
            precision = tp / (tp + fp) if tp + fp else 0.0
            recall = tp / (tp + fn) if tp + fn else 0.0
            f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
            points.append(ThresholdPoint(float(threshold), precision, recall, f1))
            LOGGER.debug("threshold=%.2f precision=%.3f recall=%.3f f1=%.3f", threshold, precision, recall, f1)
        return CalibrationResult(points=points, scores=scores.tolist())
