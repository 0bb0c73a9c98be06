from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from ..index.schema import ScoredCandidate, SourceCitation
from ..tokenize import tokenize
from .fuse import clamp01

DEFAULT_THRESHOLDS: Dict[str, float] = {"short": 0.24, "medium": 0.28, "long": 0.30}


def group_by_parent(candidates: Sequence[ScoredCandidate]) -> "OrderedDict[str, List[ScoredCandidate]]":
    groups: "OrderedDict[str, List[ScoredCandidate]]" = OrderedDict()
    for c in candidates:
        groups.setdefault(c.parent_id, []).append(c)
    return groups


def cap_per_parent(candidates: Sequence[ScoredCandidate], max_per_parent: int = 3) -> List[ScoredCandidate]:
    out: List[ScoredCandidate] = []
    for group in group_by_parent(candidates).values():
        group = sorted(group, key=lambda c: c.score, reverse=True)
        out.extend(group[:max_per_parent])
    return out


def dynamic_threshold(original_query: str, thresholds: Optional[Dict[str, float]] = None) -> float:
    """Broad (short) queries accept weaker matches than long, specific ones."""
    t = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
    n = len(tokenize(original_query))
    if n <= 3:
        return float(t["short"])
    if n <= 8:
        return float(t["medium"])
    return float(t["long"])


def select_matches(
    candidates: Sequence[ScoredCandidate],
    threshold: float,
    max_per_parent: int = 3,
    final_k: int = 12,
) -> Tuple[List[ScoredCandidate], float]:
    """Cap per parent, drop below threshold, best first, top final_k. Returns (matches, relevance)."""
    kept = [c for c in cap_per_parent(candidates, max_per_parent) if c.score >= threshold]
    kept.sort(key=lambda c: c.score, reverse=True)
    kept = kept[:final_k]
    relevance = clamp01(kept[0].score) if kept else 0.0
    return kept, relevance


def build_citations(
    matches: Sequence[ScoredCandidate],
    fallback_base_url: str = "",
    snippet_chars: int = 160,
) -> List[SourceCitation]:
    base = (fallback_base_url or "").rstrip("/")
    out: List[SourceCitation] = []
    for m in matches:
        meta = m.metadata or {}
        slug = meta.get("slug") or None
        url = meta.get("url") or meta.get("link") or None
        if (not url or not str(url).strip()) and slug and base:
            url = f"{base}/{slug}/"
        out.append(
            SourceCitation(
                title=meta.get("title") or "Untitled",
                id=m.id,
                score=m.score,
                url=url or None,
                parent_id=meta.get("parent_id") or None,
                slug=slug,
                snippet=str(meta.get("content") or "")[:snippet_chars],
            )
        )
    return out
