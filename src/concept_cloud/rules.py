"""Deterministic concept families that take precedence over fuzzy matching."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Iterable, Optional, Sequence, Tuple


@dataclass(frozen=True)
class FamilyRule:
    """Emit ``key`` when every token group has at least one member present."""

    key: str
    groups: Tuple[FrozenSet[str], ...]

    def matches(self, tokens: AbstractSet[str]) -> bool:
        return all(not group.isdisjoint(tokens) for group in self.groups)


def rule(key: str, *groups: Iterable[str]) -> FamilyRule:
    return FamilyRule(key=key, groups=tuple(frozenset(group) for group in groups))


DEFAULT_RULES: Tuple[FamilyRule, ...] = (
    rule("correo", {"correo"}),
    rule("acta reunion", {"reunion"}, {"acta", "resumen", "informe"}),
    rule("propuesta comercial", {"comercial", "venta"}, {"propuesta", "informe"}),
    rule("requisitos tecnicos", {"requisito"}, {"tecnico"}),
    rule("informe", {"informe"}),
)


class RuleClassifier:
    """Ordered list of family rules; the first rule that fires wins."""

    def __init__(self, rules: Sequence[FamilyRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def classify(self, tokens: Iterable[str]) -> Optional[str]:
        token_set = frozenset(tokens)
        if not token_set:
            return None
        for family in self.rules:
            if family.matches(token_set):
                return family.key
        return None
