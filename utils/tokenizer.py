"""
Free-text normalization used for keyword and pattern matching.

"Příliš Žluťoučký kůň" → "prilis-zlutoucky-kun"

The normalizer is a strategy: anything with the `Tokenizer` call signature can
be installed with `set_tokenizer()` when a deployment needs locale-specific
folding rules.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Callable

Tokenizer = Callable[[str], str]

_NON_WORD = re.compile(r"[^a-z0-9]+")


def replace_diacritics(text: str) -> str:
    """Strip combining marks, keep the base letters and the original case."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def default_tokenize(text: str) -> str:
    if not text:
        return ""
    text = replace_diacritics(text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = _NON_WORD.sub("-", text.lower())
    return text.strip("-")


_tokenizer: Tokenizer = default_tokenize


def set_tokenizer(fn: Tokenizer | None = None) -> None:
    """Install a custom normalizer; None restores the default."""
    global _tokenizer
    _tokenizer = fn or default_tokenize


def tokenize(text: str) -> str:
    return _tokenizer(text or "")
