from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from ..index.schema import ScoredCandidate


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """0 for missing, empty or zero-norm vectors; compares the common prefix when lengths differ."""
    if a is None or b is None or len(a) == 0 or len(b) == 0:
        return 0.0
    n = min(len(a), len(b))
    x = np.asarray(a[:n], dtype="float64")
    y = np.asarray(b[:n], dtype="float64")
    na = float(np.dot(x, x))
    nb = float(np.dot(y, y))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(x, y) / (np.sqrt(na) * np.sqrt(nb)))


def max_marginal_relevance(
    query_vector: Sequence[float],
    candidates: Sequence[ScoredCandidate],
    k: int = 30,
    lambda_: float = 0.5,
) -> List[ScoredCandidate]:
    """
    Greedy MMR: each step picks the candidate maximizing
    lambda * sim(query) - (1 - lambda) * max sim(already picked).

    Candidates start in combined-score order; on equal MMR the earlier one
    wins.
    """
    remaining = sorted(candidates, key=lambda c: c.score, reverse=True)
    to_query = {id(c): cosine_similarity(query_vector, c.vector) for c in remaining}
    picked: List[ScoredCandidate] = []
    while len(picked) < k and remaining:
        best_i, best_val = 0, float("-inf")
        for i, c in enumerate(remaining):
            redundancy = 0.0
            for p in picked:
                sim = cosine_similarity(c.vector, p.vector)
                if sim > redundancy:
                    redundancy = sim
            val = lambda_ * to_query[id(c)] - (1.0 - lambda_) * redundancy
            if val > best_val:
                best_i, best_val = i, val
        picked.append(remaining.pop(best_i))
    return picked
