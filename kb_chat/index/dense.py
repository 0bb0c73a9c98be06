from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..tokenize import tokenize
from .filters import Filter, build_chunk_filter, evaluate
from .schema import VectorMatch

logger = logging.getLogger(__name__)

DEFAULT_TOP_K_TIERS = {"short": 80, "medium": 60, "long": 40}


class VectorIndex(ABC):
    @abstractmethod
    def upsert(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        where: Optional[Filter] = None,
        include_values: bool = True,
    ) -> List[VectorMatch]:
        """Nearest neighbours by cosine similarity, best first."""
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class InMemoryVectorIndex(VectorIndex):
    """
    Brute-force cosine index over a normalized float32 matrix.

    Filters are applied before ranking, so top_k is always filled from the
    matching subset. Persisted as embeddings.npy + vectors.jsonl.
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._ids: List[str] = []
        self._pos: Dict[str, int] = {}
        self._meta: List[Dict[str, Any]] = []
        self._raw: List[np.ndarray] = []
        self._matrix: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def upsert(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        v = np.asarray(vector, dtype="float32")
        if v.shape != (self.dimension,):
            raise ValueError(f"vector for {id} has shape {v.shape}, expected ({self.dimension},)")
        with self._lock:
            if id in self._pos:
                i = self._pos[id]
                self._raw[i] = v
                self._meta[i] = dict(metadata)
            else:
                self._pos[id] = len(self._ids)
                self._ids.append(id)
                self._raw.append(v)
                self._meta.append(dict(metadata))
            self._matrix = None

    def count(self) -> int:
        return len(self._ids)

    def _normalized(self) -> np.ndarray:
        if self._matrix is None:
            if not self._raw:
                self._matrix = np.zeros((0, self.dimension), dtype="float32")
            else:
                M = np.vstack(self._raw)
                norms = np.linalg.norm(M, axis=1, keepdims=True)
                norms[norms == 0] = 1.0
                self._matrix = M / norms
        return self._matrix

    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        where: Optional[Filter] = None,
        include_values: bool = True,
    ) -> List[VectorMatch]:
        with self._lock:
            M = self._normalized()
            idx = [i for i, m in enumerate(self._meta) if evaluate(where, m)]
            if not idx or top_k <= 0:
                return []
            q = np.asarray(vector, dtype="float32")
            qn = float(np.linalg.norm(q))
            if qn == 0:
                sims = np.zeros(len(idx), dtype="float32")
            else:
                sims = M[idx] @ (q / qn)
            order = np.argsort(-sims, kind="stable")[:top_k]
            hits: List[VectorMatch] = []
            for j in order.tolist():
                i = idx[j]
                hits.append(
                    VectorMatch(
                        id=self._ids[i],
                        score=float(sims[j]),
                        metadata=dict(self._meta[i]),
                        values=self._raw[i].tolist() if include_values else None,
                    )
                )
            return hits

    def save(self, index_dir: Path) -> None:
        index_dir = Path(index_dir)
        index_dir.mkdir(parents=True, exist_ok=True)
        M = np.vstack(self._raw) if self._raw else np.zeros((0, self.dimension), dtype="float32")
        np.save(index_dir / "embeddings.npy", M)
        with open(index_dir / "vectors.jsonl", "w", encoding="utf-8") as out:
            for vid, meta in zip(self._ids, self._meta):
                out.write(json.dumps({"id": vid, "metadata": meta}, ensure_ascii=False) + "\n")

    @classmethod
    def load(cls, index_dir: Path, dimension: int) -> "InMemoryVectorIndex":
        index_dir = Path(index_dir)
        inst = cls(dimension)
        emb_path = index_dir / "embeddings.npy"
        meta_path = index_dir / "vectors.jsonl"
        if not emb_path.exists() or not meta_path.exists():
            logger.info("no persisted vectors under %s; starting empty", index_dir)
            return inst
        M = np.load(emb_path)
        with open(meta_path, "r", encoding="utf-8") as f:
            rows = [json.loads(ln) for ln in f if ln.strip()]
        if len(rows) != M.shape[0]:
            raise RuntimeError(f"{meta_path} has {len(rows)} rows but embeddings.npy has {M.shape[0]}")
        for row, vec in zip(rows, M):
            inst.upsert(row["id"], vec, row.get("metadata") or {})
        return inst


def dynamic_top_k(query: str, tiers: Optional[Dict[str, int]] = None) -> int:
    """Short (ambiguous) queries fetch more candidates than long, specific ones."""
    t = {**DEFAULT_TOP_K_TIERS, **(tiers or {})}
    n = len(tokenize(query))
    if n <= 3:
        return int(t["short"])
    if n <= 8:
        return int(t["medium"])
    return int(t["long"])


class DenseRetriever:
    def __init__(self, index: VectorIndex, top_k_tiers: Optional[Dict[str, int]] = None):
        self.index = index
        self.top_k_tiers = top_k_tiers

    def search(
        self,
        query_vector: Sequence[float],
        query: str,
        shortlist: Sequence[str] = (),
    ) -> List[VectorMatch]:
        top_k = dynamic_top_k(query, self.top_k_tiers)
        where = build_chunk_filter(shortlist)
        matches = self.index.query(query_vector, top_k=top_k, where=where, include_values=True)
        logger.debug("dense search", extra={"top_k": top_k, "shortlist": len(shortlist), "hits": len(matches)})
        return matches
