from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import UpstreamError
from .dense import VectorIndex
from .filters import Filter, list_flag_key, to_where
from .schema import VectorMatch

logger = logging.getLogger(__name__)

# Chroma metadata values must be scalars; these are flattened on upsert.
LIST_FIELDS = frozenset(["tags", "category_slugs", "tag_slugs"])


def flatten_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in metadata.items():
        if k in LIST_FIELDS and isinstance(v, (list, tuple)):
            out[k] = json.dumps(list(v), ensure_ascii=False)
            for item in v:
                out[list_flag_key(k, item)] = True
        elif v is None:
            continue
        else:
            out[k] = v
    return out


def restore_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (metadata or {}).items():
        if "::" in k:
            continue
        if k in LIST_FIELDS and isinstance(v, str):
            try:
                out[k] = json.loads(v)
            except ValueError:
                out[k] = [v]
        else:
            out[k] = v
    return out


class ChromaVectorIndex(VectorIndex):
    """Persistent Chroma collection in cosine space (score = 1 - distance)."""

    def __init__(self, persist_dir: str, collection: str = "kb"):
        import chromadb
        from chromadb.config import Settings

        settings = Settings(anonymized_telemetry=False, allow_reset=True)
        self.client = chromadb.PersistentClient(path=persist_dir, settings=settings)
        self.collection_name = collection
        self.collection = self.client.get_or_create_collection(
            name=collection,
            metadata={"hnsw:space": "cosine"},
        )

    def reset(self) -> None:
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as e:  # collection may not exist yet
            logger.debug("delete_collection(%s) skipped: %s", self.collection_name, e)
        self.collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def upsert(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        self.collection.upsert(
            ids=[id],
            embeddings=[list(map(float, vector))],
            metadatas=[flatten_metadata(metadata)],
            documents=[str(metadata.get("content") or "")],
        )

    def count(self) -> int:
        return self.collection.count()

    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        where: Optional[Filter] = None,
        include_values: bool = True,
    ) -> List[VectorMatch]:
        include = ["metadatas", "distances"]
        if include_values:
            include.append("embeddings")
        try:
            res = self.collection.query(
                query_embeddings=[list(map(float, vector))],
                n_results=max(1, top_k),
                where=to_where(where, LIST_FIELDS),
                include=include,
            )
        except Exception as e:
            raise UpstreamError("vector index query failed", details={"error": str(e)}) from e

        ids = (res.get("ids") or [[]])[0] or []
        dists = (res.get("distances") or [[]])[0] or []
        metas = (res.get("metadatas") or [[]])[0] or []
        embs_rows = res.get("embeddings")
        embs = embs_rows[0] if embs_rows is not None and len(embs_rows) else None

        hits: List[VectorMatch] = []
        for i, cid in enumerate(ids):
            d = dists[i] if i < len(dists) else None
            values = None
            if embs is not None and i < len(embs) and embs[i] is not None:
                values = [float(x) for x in embs[i]]
            hits.append(
                VectorMatch(
                    id=cid,
                    score=(1.0 - float(d)) if d is not None else 0.0,
                    metadata=restore_metadata(metas[i] if i < len(metas) else {}),
                    values=values,
                )
            )
        return hits
