"""Text processing helpers used throughout the Concept Cloud package."""

from __future__ import annotations

import re
import unicodedata
from typing import Any

_NON_WORD_RE = re.compile(r"[^\w\s]|_")
_SPACE_RE = re.compile(r"\s+")


def strip_diacritics(value: str) -> str:
    """Decompose ``value`` and drop combining marks (``"reunión"`` -> ``"reunion"``)."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def replace_punctuation(value: str) -> str:
    """Replace every character that is not a letter, digit or whitespace with a space."""
    return _NON_WORD_RE.sub(" ", value)


def collapse_whitespace(value: str) -> str:
    return _SPACE_RE.sub(" ", value).strip()


def to_text(value: Any) -> str:
    """Best-effort conversion of an arbitrary payload value to ``str``."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return str(value)
    except Exception:  # noqa: BLE001 - hostile __str__ implementations
        return ""
