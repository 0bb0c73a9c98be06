from __future__ import annotations

import logging
import math
from typing import List, Optional

from ..errors import ConfigError
from ..index.schema import ScoredCandidate
from .fuse import clamp01

logger = logging.getLogger(__name__)


class Reranker:
    """Identity by default; subclasses reorder and rescore candidates."""

    name = "none"

    def rerank(self, query: str, candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
        return candidates


class NoopReranker(Reranker):
    pass


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


class CrossEncoderReranker(Reranker):
    """
    Cross-encoder reranker (CPU-friendly). If torch / sentence-transformers is
    unavailable, this class gracefully disables itself and becomes a no-op.

    The cross-encoder logit is squashed with a sigmoid and blended into the
    fused score: score' = (1 - weight) * score + weight * sigmoid(logit).
    """

    name = "cross-encoder"

    def __init__(self, model_name: str = "BAAI/bge-reranker-base", weight: float = 0.5):
        self.model_name = model_name
        self.weight = clamp01(weight)
        self._model = None
        self.enabled = False
        try:
            from sentence_transformers import CrossEncoder  # type: ignore
            self._CrossEncoder = CrossEncoder
            self.enabled = True
        except Exception as e:
            logger.warning("cross-encoder reranker disabled: %s", e)
            self._CrossEncoder = None
            self.enabled = False

    def _ensure_model(self):
        if self._model is None:
            self._model = self._CrossEncoder(self.model_name)

    def rerank(self, query: str, candidates: List[ScoredCandidate]) -> List[ScoredCandidate]:
        if not self.enabled or not candidates:
            return candidates
        try:
            self._ensure_model()
            pairs = [(query, c.content) for c in candidates]
            logits = self._model.predict(pairs)  # higher is better
        except Exception as e:
            logger.warning("rerank failed, keeping fused order: %s", e)
            return candidates
        out: List[ScoredCandidate] = []
        for c, logit in zip(candidates, logits):
            blended = (1.0 - self.weight) * c.score + self.weight * _sigmoid(float(logit))
            out.append(c.model_copy(update={"score": clamp01(blended)}))
        out.sort(key=lambda c: c.score, reverse=True)
        return out


def make_reranker(provider: Optional[str] = "none", model: Optional[str] = None, weight: float = 0.5) -> Reranker:
    name = (provider or "none").strip().lower()
    if name in ("none", "noop", ""):
        return NoopReranker()
    if name == "cross-encoder":
        return CrossEncoderReranker(model_name=model or "BAAI/bge-reranker-base", weight=weight)
    raise ConfigError(f"Unsupported reranker.provider: {name}")
