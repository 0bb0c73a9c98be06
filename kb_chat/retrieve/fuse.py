from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..index.schema import LexicalHit, ScoredCandidate, VectorMatch
from ..tokenize import tokenize

DEFAULT_WEIGHTS: Dict[str, float] = {
    "vector": 0.6,
    "coverage": 0.25,
    "lexical": 0.12,
    "phrase": 0.08,
    "shortlist_bonus": 0.03,
}
MIN_LEXICAL_MAX = 1e-6


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def haystack(metadata: Mapping[str, Any]) -> str:
    """Lowercased title, category, tags, slugs and content of one chunk."""
    parts: List[str] = [str(metadata.get("title") or ""), str(metadata.get("category") or "")]
    for key in ("tags", "category_slugs", "tag_slugs"):
        parts.extend(str(v) for v in (metadata.get(key) or []))
    parts.append(str(metadata.get("slug") or ""))
    parts.append(str(metadata.get("content") or ""))
    return " ".join(parts).lower()


def coverage_ratio(terms: Sequence[str], hay: str) -> float:
    if not terms:
        return 0.0
    return sum(1 for t in terms if t in hay) / len(terms)


def fuse(
    matches: Sequence[VectorMatch],
    original_query: str,
    lexical_hits: Sequence[LexicalHit],
    shortlist: Sequence[str],
    weights: Optional[Dict[str, float]] = None,
) -> List[ScoredCandidate]:
    """
    Blend dense similarity with keyword evidence into one score in [0, 1].

    Coverage and the phrase test look at the query as the user typed it, not
    the rewritten or expanded form.
    """
    w = {**DEFAULT_WEIGHTS, **(weights or {})}
    lex_by_parent = {h.parent_id: h.score for h in lexical_hits}
    max_lex = max([MIN_LEXICAL_MAX] + [h.score for h in lexical_hits])
    shortlisted = set(shortlist)
    terms = tokenize(original_query)
    phrase = str(original_query or "").lower().strip()

    out: List[ScoredCandidate] = []
    for m in matches:
        meta = m.metadata or {}
        hay = haystack(meta)
        parent_id = str(meta.get("parent_id") or m.id)
        cov = coverage_ratio(terms, hay)
        lex_norm = lex_by_parent.get(parent_id, 0.0) / max_lex
        phrase_hit = len(phrase) >= 3 and phrase in hay
        vec_score = float(m.score or 0.0)
        combined = (
            vec_score * w["vector"]
            + cov * w["coverage"]
            + lex_norm * w["lexical"]
            + (1.0 if phrase_hit else 0.0) * w["phrase"]
        )
        if parent_id in shortlisted:
            combined += w["shortlist_bonus"]
        out.append(
            ScoredCandidate(
                id=m.id,
                score=clamp01(combined),
                metadata=dict(meta),
                vector=m.values,
                vector_score=vec_score,
                lexical_score_normalized=lex_norm,
                coverage_ratio=cov,
                phrase_hit=phrase_hit,
            )
        )
    return out
