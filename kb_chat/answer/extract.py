from __future__ import annotations

from typing import List, Sequence

from ..index.schema import ScoredCandidate
from ..retrieve.fuse import haystack
from ..retrieve.select import group_by_parent
from ..tokenize import tokenize

ELLIPSIS = "…"


def not_found_answer(query: str) -> str:
    return (
        f'Here\'s what I looked for in your question, "{query}", but I couldn\'t find anything '
        "reliable in the knowledge base. Try rephrasing or asking about a related concept."
    )


def synthesize_answer(
    original_query: str,
    matches: Sequence[ScoredCandidate],
    synthesis_chars: int = 480,
    max_groups: int = 3,
    max_overlap_terms: int = 6,
) -> str:
    """
    Extractive answer: fixed templates around text copied from the matches.
    Nothing here generates content that is not in the retrieved chunks.
    """
    if not matches:
        return not_found_answer(original_query)

    groups = list(group_by_parent(matches).values())
    groups.sort(key=lambda g: g[0].score, reverse=True)
    top_groups = groups[:max_groups]

    lines: List[str] = [f'Here\'s how our sources address "{original_query}" and why they\'re relevant:']

    primary = top_groups[0]
    joined = " ".join(c.content for c in primary)
    synthesis = joined[:synthesis_chars]
    if len(joined) > synthesis_chars:
        synthesis += ELLIPSIS
    lines.append(f"{primary[0].title or 'Top source'}: {synthesis}")

    lines.append("\nWhy these sources are relevant:")
    terms = tokenize(original_query)
    for i, grp in enumerate(top_groups, start=1):
        top = grp[0]
        hay = haystack(top.metadata)
        overlaps = [t for t in terms if t in hay][:max_overlap_terms]
        if overlaps:
            overlap_text = "mentions " + ", ".join(f"“{t}”" for t in overlaps)
        else:
            overlap_text = "covers closely related topics"
        title = top.title or f"Source {i}"
        pct = int(top.score * 100 + 0.5)
        lines.append(f"- {title} (relevance {pct}%): this source {overlap_text} that align with your question.")

    lines.append("\nSee Sources below for links to the documents.")
    return "\n".join(lines)
