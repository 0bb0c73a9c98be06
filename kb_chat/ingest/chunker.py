from __future__ import annotations

import re
from typing import List

_ABBREVIATIONS = frozenset(["mr", "mrs", "ms", "dr", "prof", "sr", "jr", "vs", "etc", "e.g", "i.e"])
_BOUNDARY_RE = re.compile(r"[.!?]+(?=\s)")

HARD_SPLIT_OVERLAP = 0.15


def _is_abbreviation(text: str, punct_start: int, punct: str) -> bool:
    if punct != ".":
        return False
    word_start = text.rfind(" ", 0, punct_start) + 1
    word = text[word_start:punct_start].lstrip("(\"'").lower()
    return word in _ABBREVIATIONS


def split_sentences(text: str) -> List[str]:
    """Split on terminal punctuation + whitespace, keeping "Dr." / "e.g." etc. intact."""
    normalized = re.sub(r"\s+", " ", str(text or "")).strip()
    if not normalized:
        return []
    sentences: List[str] = []
    start = 0
    for m in _BOUNDARY_RE.finditer(normalized):
        if _is_abbreviation(normalized, m.start(), m.group()):
            continue
        s = normalized[start : m.end()].strip()
        if s:
            sentences.append(s)
        start = m.end()
    tail = normalized[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def hard_split(text: str, max_chars: int, overlap: int) -> List[str]:
    """Fixed character windows of max_chars, consecutive windows sharing `overlap` chars."""
    out: List[str] = []
    if not text:
        return out
    step = max(1, max_chars - overlap)
    for start in range(0, len(text), step):
        piece = text[start : start + max_chars]
        if piece.strip():
            out.append(piece)
        if start + max_chars >= len(text):
            break
    return out


def chunk_text(text: str, max_chars: int = 1200, overlap_sentences: int = 3) -> List[str]:
    """
    Greedy sentence packing under a character limit.

    On overflow the finished chunk is flushed and the next one is seeded with
    the last `overlap_sentences` sentences of the finished chunk (oldest seed
    sentences dropped until the seed plus the new sentence fit). A sentence
    longer than the limit on its own is hard-split.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    sentences = split_sentences(text)
    chunks: List[str] = []
    current: List[str] = []
    cur_len = 0

    for s in sentences:
        needed = cur_len + (1 if current else 0) + len(s)
        if needed <= max_chars:
            current.append(s)
            cur_len = needed
            continue

        if current:
            chunks.append(" ".join(current))

        if len(s) > max_chars:
            chunks.extend(hard_split(s, max_chars, int(max_chars * HARD_SPLIT_OVERLAP)))
            current, cur_len = [], 0
            continue

        seed = current[-overlap_sentences:] if overlap_sentences > 0 and current else []
        while seed and len(" ".join(seed + [s])) > max_chars:
            seed = seed[1:]
        current = seed + [s]
        cur_len = len(" ".join(current))

    if current:
        chunks.append(" ".join(current))
    return chunks
