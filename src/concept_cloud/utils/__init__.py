"""Utility helpers shared across the Concept Cloud package."""

from .io import load_json, save_json
from .text import collapse_whitespace, replace_punctuation, strip_diacritics, to_text

__all__ = [
    "collapse_whitespace",
    "load_json",
    "replace_punctuation",
    "save_json",
    "strip_diacritics",
    "to_text",
]
