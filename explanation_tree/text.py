"""Tokenization and light stemming shared by grouping, critic and policy checks."""

from __future__ import annotations

import re

_TOKEN_SPLIT = re.compile(r"[^a-z0-9_]+")


def tokenize_normalized(text: str) -> list[str]:
    """Lowercase ``text`` and split it on anything that is not ``[a-z0-9_]``."""
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if token]


def stem_token(token: str) -> str:
    """Strip the common English inflections so ``bounds``/``bound`` compare equal.

    Deliberately small: plural ``-ies``/``-es``/``-s``, ``-ing`` and ``-ed``,
    each guarded by a minimum length so short words survive untouched.
    """
    if token.endswith("ies") and len(token) > 5:
        return token[:-3] + "y"
    if token.endswith("ing") and len(token) > 6:
        return token[:-3]
    if token.endswith("ed") and len(token) > 5:
        return token[:-2]
    if token.endswith("es") and len(token) > 5:
        stem = token[:-2]
        if stem.endswith(("s", "x", "z", "ch", "sh")):
            return stem
        return token[:-1]
    if token.endswith("s") and len(token) > 4:
        return token[:-1]
    return token
