"""
Gold-set evaluation of the chat pipeline.

Gold file: one JSON object per line,

    {"qid": "pw-1", "question": "how do I reset my password",
     "expected_parent_ids": ["101"], "expected_slugs": ["password-reset-guide"],
     "must_include": ["password"], "any_of": [], "must_not_include": [],
     "tags": ["account"]}

Retrieval is scored on the cited sources of each answer: a case hits when any
expected parent id or slug is cited; MRR uses the first such citation.
"""

from __future__ import annotations

import json
import statistics
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .app import ChatPipeline
from .index.schema import SourceCitation


def load_gold(path: Path) -> List[Dict[str, Any]]:
    cases = []
    with open(path, "r", encoding="utf-8") as f:
        for ln in f:
            ln = ln.strip()
            if not ln:
                continue
            cases.append(json.loads(ln))
    return cases


def _match_citation(src: SourceCitation, case: Dict[str, Any]) -> bool:
    ids = {str(x) for x in case.get("expected_parent_ids") or []}
    slugs = {str(x) for x in case.get("expected_slugs") or []}
    return (src.parent_id is not None and src.parent_id in ids) or (src.slug is not None and src.slug in slugs)


def citation_rank(sources: Sequence[SourceCitation], case: Dict[str, Any]) -> Optional[int]:
    """1-based rank of the first expected parent among distinct cited parents."""
    seen = []
    for src in sources:
        key = src.parent_id or src.id
        if key in seen:
            continue
        seen.append(key)
        if _match_citation(src, case):
            return len(seen)
    return None


def string_checks(
    answer: str, must_inc: List[str], any_of: List[str], must_not: List[str]
) -> Dict[str, Any]:
    a = answer.lower()
    ok = True
    reasons = []
    for s in must_inc or []:
        if s.lower() not in a:
            ok = False
            reasons.append(f"missing:{s}")
    if any_of:
        if not any(s.lower() in a for s in any_of):
            ok = False
            reasons.append("any_of_failed")
    for s in must_not or []:
        if s.lower() in a:
            ok = False
            reasons.append(f"must_not:{s}")
    return {"ok": ok, "reasons": reasons}


def percentile(values: Sequence[int], q: float) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    return ordered[int(q * (len(ordered) - 1))]


def evaluate(pipeline: ChatPipeline, gold: List[Dict[str, Any]], k: int = 10) -> Dict[str, Any]:
    results = []
    latencies: List[int] = []
    for g in gold:
        q = g["question"]
        t0 = time.perf_counter()
        res = pipeline.answer(q, session_id="eval")
        dt = int((time.perf_counter() - t0) * 1000)
        latencies.append(dt)

        rank = citation_rank(res.sources, g)
        hit = rank is not None and rank <= k
        checks = string_checks(
            res.answer, g.get("must_include", []), g.get("any_of", []), g.get("must_not_include", [])
        )
        results.append(
            {
                "qid": g.get("qid"),
                "question": q,
                "retrieval_hit": hit,
                "mrr": (1.0 / rank) if hit else 0.0,
                "relevance": res.relevance,
                "answer_ok": checks["ok"],
                "answer_reasons": checks["reasons"],
                "latency_ms": dt,
            }
        )

    n = max(1, len(results))
    return {
        "cases": len(results),
        "k": k,
        "hit_rate": sum(1 for r in results if r["retrieval_hit"]) / n,
        "mrr": sum(r["mrr"] for r in results) / n,
        "answer_ok_rate": sum(1 for r in results if r["answer_ok"]) / n,
        "latency_p50_ms": statistics.median(latencies) if latencies else 0,
        "latency_p95_ms": percentile(latencies, 0.95),
        "results": results,
    }


def format_summary(summary: Dict[str, Any]) -> str:
    k = summary["k"]
    lines = [
        "=== EVAL SUMMARY ===",
        f"Cases: {summary['cases']}",
        f"Hit@{k}:           {summary['hit_rate']:.3f}",
        f"MRR@{k}:           {summary['mrr']:.3f}",
        f"Answer checks:    {summary['answer_ok_rate']:.3f}",
        f"Latency p50:      {summary['latency_p50_ms']} ms",
        f"Latency p95:      {summary['latency_p95_ms']} ms",
        "",
        "Failed cases:",
    ]
    for r in summary["results"]:
        if not (r["retrieval_hit"] and r["answer_ok"]):
            lines.append(
                f"- {r['qid']}: hit={r['retrieval_hit']} answer_ok={r['answer_ok']} "
                f"reasons={r['answer_reasons']} (lat {r['latency_ms']} ms)"
            )
    return "\n".join(lines)
