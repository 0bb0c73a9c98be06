from __future__ import annotations

import re
from typing import List

STOPWORDS = frozenset(
    [
        "the", "a", "an", "and", "or", "of", "to", "in", "on", "for",
        "with", "by", "at", "from", "is", "are", "was", "were", "be",
    ]
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def tokenize(text: str | None, drop_stopwords: bool = False) -> List[str]:
    """
    Lowercase, collapse non-alphanumerics to spaces, drop tokens shorter than
    2 chars (and stopwords when asked), dedupe preserving first-seen order.
    """
    if not text:
        return []
    parts = _NON_ALNUM_RE.sub(" ", str(text).lower()).split()
    out: List[str] = []
    seen = set()
    for t in parts:
        if len(t) < 2:
            continue
        if drop_stopwords and t in STOPWORDS:
            continue
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out


def lexical_terms(text: str | None) -> List[str]:
    return tokenize(text, drop_stopwords=True)


def normalize_spaces(s: str | None) -> str:
    return re.sub(r"\s+", " ", str(s or "")).strip().lower()
