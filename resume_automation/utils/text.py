"""
Text helpers shared by the scoring functions.

All scoring is lexical: lower-cased tokens from a fixed pattern, a small
stop-word list, and half-up rounding so scores match the values users see in
the builder UI.
"""

from __future__ import annotations

import math
import re

_TOKEN_PATTERN = re.compile(r"[a-z0-9][a-z0-9\+#\.]*[a-z0-9\+#]|[a-z0-9]")

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
    "into", "is", "it", "its", "of", "on", "or", "our", "the", "their", "to",
    "was", "were", "will", "with", "within", "you", "your", "we", "this",
    "that", "have", "has", "using", "use", "able", "strong", "ability",
    "experience", "plus", "etc",
})


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.lower())


def significant_tokens(text: str) -> set[str]:
    """Distinct tokens that carry meaning: no stop words, no single letters.

    Counts written as "5+" are folded into "5" so "5+ years" meets "5 years".
    """
    tokens: set[str] = set()
    for token in tokenize(text):
        if token.endswith("+") and token[:-1].isdigit():
            token = token[:-1]
        if token in STOP_WORDS:
            continue
        if len(token) > 1 or token.isdigit():
            tokens.add(token)
    return tokens


def contains_phrase(haystack: str, phrase: str) -> bool:
    """Case-insensitive substring containment; blank phrases never match."""
    phrase = phrase.strip().lower()
    return bool(phrase) and phrase in haystack.lower()
