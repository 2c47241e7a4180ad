"""Turn raw survey answers into short, comparable token sequences."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Tuple

from .utils.text import collapse_whitespace, replace_punctuation, strip_diacritics, to_text

SynonymRule = Tuple["re.Pattern[str]", str]

DEFAULT_STOPWORDS: FrozenSet[str] = frozenset(
    {
        # articles, prepositions, possessives
        "de", "la", "el", "los", "las", "un", "una", "y", "o", "a", "en", "para", "por", "con",
        "del", "al", "que", "me", "mi", "mis", "tu", "tus", "su", "sus",
        # task verbs: keep the concept, drop the action
        "hacer", "realizar", "tener", "gestionar", "llevar",
        "responder", "contestar", "redactar", "escribir", "enviar", "leer", "revisar",
        "preparar", "crear", "rellenar", "completar", "tramitar", "procesar", "organizar",
        "coordinar", "planificar", "agendar", "programar", "buscar", "actualizar",
        "solucionar", "resolver", "atender", "seguir", "seguimiento",
        "pasar", "sacar", "generar", "montar", "armar", "validar", "definir",
    }
)


def _synonym(pattern: str, canonical: str) -> SynonymRule:
    return re.compile(pattern), canonical


DEFAULT_SYNONYMS: Tuple[SynonymRule, ...] = (
    _synonym(r"\b(e-?mails?|mail(?:s|es)?|correos? electronicos?|correos?)\b", "correo"),
    _synonym(r"\b(outlook)\b", "correo"),
    _synonym(r"\b(reunion(?:es)?|meetings?)\b", "reunion"),
    _synonym(r"\b(informes?|reportes?)\b", "informe"),
    _synonym(r"\b(actas?|minutas?)\b", "acta"),
    _synonym(r"\b(propuestas?|ofertas?|presupuestos?|cotizacion(?:es)?)\b", "propuesta"),
    _synonym(r"\b(requisitos?)\b", "requisito"),
    _synonym(r"\b(tecnicos?|tecnicas?)\b", "tecnico"),
    _synonym(r"\b(resumen(?:es)?|resumir)\b", "resumen"),
)


def singularize(token: str, min_length: int = 4) -> str:
    """Strip trailing ``es``/``s`` from tokens longer than ``min_length``.

    Stripping repeats until the token is stable, which keeps
    :meth:`Normalizer.tokens` idempotent.
    """
    while len(token) > min_length:
        if token.endswith("es"):
            token = token[:-2]
        elif token.endswith("s"):
            token = token[:-1]
        else:
            break
    return token


@dataclass
class Normalizer:
    """Pure text -> token pipeline.

    Steps run in a fixed order: trim, lowercase, strip diacritics, replace
    punctuation, collapse whitespace, apply synonyms, split, singularize,
    drop stopwords and deduplicate (first occurrence wins).
    """

    synonyms: Sequence[SynonymRule] = DEFAULT_SYNONYMS
    stopwords: FrozenSet[str] = DEFAULT_STOPWORDS
    min_singular_length: int = 4

    def clean(self, raw: object) -> str:
        """Return the cleaned, synonym-substituted string for ``raw``."""
        text = to_text(raw).strip().lower()
        text = strip_diacritics(text)
        text = collapse_whitespace(replace_punctuation(text))
        return self._substitute(text).strip()

    def tokens(self, raw: object) -> List[str]:
        base = self.clean(raw)
        if not base:
            return []
        out: List[str] = []
        seen = set()
        for token in base.split(" "):
            if not token or token in self.stopwords:
                continue
            singular = singularize(token, self.min_singular_length)
            if singular != token:
                # "mailss" only becomes a synonym once stripped
                singular = self._substitute(singular)
            if singular in self.stopwords or singular in seen:
                continue
            seen.add(singular)
            out.append(singular)
        return out

    def phrase(self, raw: object) -> Optional[str]:
        """Return the tokens joined by a space, or ``None`` when nothing remains."""
        tokens = self.tokens(raw)
        return " ".join(tokens) if tokens else None

    def _substitute(self, text: str) -> str:
        for pattern, canonical in self.synonyms:
            text = pattern.sub(canonical, text)
        return text


_DEFAULT = Normalizer()


def normalize(raw: object) -> List[str]:
    """Tokenise ``raw`` with the default vocabulary."""
    return _DEFAULT.tokens(raw)
