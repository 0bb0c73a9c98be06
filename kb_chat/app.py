from __future__ import annotations

import logging
import os
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DEFAULTS, deep_merge
from .embeddings import EmbeddingProvider, embed_for_health, make_embedder
from .errors import BadRequest, ConfigError, InternalError, NotFound, serialize_error
from .index.dense import DenseRetriever, InMemoryVectorIndex, VectorIndex, dynamic_top_k
from .index.lexical import LexicalIndexCache, LexicalScorer
from .index.schema import LexicalHit, SourceCitation
from .ingest.corpus import CorpusSource, JsonlCorpusSource
from .ingest.pipeline import IngestStats, ingest_documents
from .answer.extract import synthesize_answer
from .query.expand import expand_query
from .query.rewrite import QueryRewriter, make_rewriter
from .retrieve.fuse import fuse
from .retrieve.mmr import max_marginal_relevance
from .retrieve.rerank import NoopReranker, Reranker, make_reranker
from .retrieve.select import build_citations, dynamic_threshold, select_matches
from .utils.log import NullSink, TelemetrySink, make_sink

logger = logging.getLogger(__name__)


def _ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


@dataclass
class ChatResult:
    answer: str
    sources: List[SourceCitation]
    relevance: float
    session_id: str
    trace: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [s.model_dump(by_alias=True) for s in self.sources],
            "relevance": self.relevance,
            "sessionId": self.session_id,
        }


class ChatPipeline:
    """
    rewrite -> expand -> (lexical || embed) -> dense -> fuse -> MMR -> rerank
    -> parent cap -> threshold -> extractive answer.

    Components are passed in explicitly; `cfg` only carries tuning values.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndex,
        lexical: LexicalScorer,
        rewriter: Optional[QueryRewriter] = None,
        reranker: Optional[Reranker] = None,
        sink: Optional[TelemetrySink] = None,
        cfg: Optional[dict] = None,
    ):
        self.embedder = embedder
        self.index = index
        self.lexical = lexical
        self.rewriter = rewriter or QueryRewriter(None, enabled=False)
        self.reranker = reranker or NoopReranker()
        self.sink = sink or NullSink()
        self.cfg = deep_merge(DEFAULTS, cfg or {})
        self.dense = DenseRetriever(index, self.cfg["retrieval"]["top_k"])

    @property
    def corpus(self) -> CorpusSource:
        return self.lexical.cache.source

    def _rewrite(self, original: str) -> str:
        try:
            out = self.rewriter.rewrite(original)
        except Exception as e:
            logger.warning("rewriter raised, using original query: %s", e)
            return original
        if not isinstance(out, str) or len(out.strip()) < 3:
            return original
        return out.strip()

    def _lexical_search(self, query: str) -> List[LexicalHit]:
        try:
            return self.lexical.search(query, limit=int(self.cfg["lexical"]["limit"]))
        except Exception as e:
            logger.warning("lexical search failed, continuing without shortlist: %s", e)
            return []

    def _embed(self, text: str) -> List[float]:
        try:
            return self.embedder.embed(text)
        except Exception as e:
            logger.error("query embedding failed", extra={"error": serialize_error(e)})
            raise InternalError("Query embedding failed") from e

    def answer(self, query: Any, session_id: Optional[str] = None) -> ChatResult:
        if not isinstance(query, str) or not query.strip():
            raise BadRequest("Missing query")

        rcfg = self.cfg["retrieval"]
        acfg = self.cfg["answer"]
        timers: Dict[str, int] = {}
        t0 = time.perf_counter()

        original = query.strip()
        t = time.perf_counter()
        retrieval_query = self._rewrite(original)
        expanded = expand_query(retrieval_query)
        timers["rewrite_ms"] = _ms(t)

        # lexical shortlist and query embedding are independent
        t = time.perf_counter()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="kbchat") as pool:
            lex_future = pool.submit(self._lexical_search, expanded)
            vec_future = pool.submit(self._embed, expanded)
            lexical_hits = lex_future.result()
            query_vector = vec_future.result()
        timers["recall_ms"] = _ms(t)

        shortlist = [h.parent_id for h in lexical_hits[: int(self.cfg["lexical"]["shortlist_size"])]]

        t = time.perf_counter()
        top_k = dynamic_top_k(expanded, rcfg["top_k"])
        dense_matches = self.dense.search(query_vector, expanded, shortlist)
        timers["dense_ms"] = _ms(t)

        t = time.perf_counter()
        fused = fuse(dense_matches, original, lexical_hits, shortlist, rcfg["fusion"])
        mmr_k = int(rcfg["mmr"]["k"])
        diverse = max_marginal_relevance(query_vector, fused, k=mmr_k, lambda_=float(rcfg["mmr"]["lambda"]))
        timers["fuse_mmr_ms"] = _ms(t)

        t = time.perf_counter()
        try:
            reranked = self.reranker.rerank(expanded, diverse[:mmr_k])
        except Exception as e:
            logger.warning("reranker raised, keeping MMR order: %s", e)
            reranked = diverse[:mmr_k]
        timers["rerank_ms"] = _ms(t)

        threshold = dynamic_threshold(original, rcfg["thresholds"])
        matches, relevance = select_matches(
            reranked,
            threshold,
            max_per_parent=int(rcfg["max_per_parent"]),
            final_k=int(rcfg["final_k"]),
        )
        sources = build_citations(
            matches,
            fallback_base_url=str(acfg.get("fallback_source_base_url") or ""),
            snippet_chars=int(acfg["snippet_chars"]),
        )

        t = time.perf_counter()
        answer = synthesize_answer(
            original,
            matches,
            synthesis_chars=int(acfg["synthesis_chars"]),
            max_groups=int(acfg["max_groups"]),
            max_overlap_terms=int(acfg["max_overlap_terms"]),
        )
        timers["answer_ms"] = _ms(t)
        timers["total_ms"] = _ms(t0)

        trace = {
            "rewritten": retrieval_query if retrieval_query != original else None,
            "expanded": expanded,
            "lexical_ids": [h.parent_id for h in lexical_hits],
            "shortlist": shortlist,
            "dense_ids": [m.id for m in dense_matches],
            "mmr_ids": [c.id for c in diverse],
            "reranked_ids": [c.id for c in reranked],
            "top_k": top_k,
            "threshold": threshold,
            "matches": [{"id": m.id, "score": m.score, "pid": m.parent_id} for m in matches],
            "reranker": self.reranker.name,
            "timers_ms": timers,
        }
        logger.debug("chat answered", extra={"top_k": top_k, "threshold": threshold, "matches": len(matches), **timers})

        try:
            self.sink.emit({"query": original, **trace})
        except Exception as e:
            logger.debug("telemetry sink failed: %s", e)

        return ChatResult(
            answer=answer,
            sources=sources,
            relevance=relevance,
            session_id=session_id or str(uuid.uuid4()),
            trace=trace,
        )

    def find_source(self, parent_id: Optional[str] = None, slug: Optional[str] = None) -> Dict[str, Any]:
        if not parent_id and not slug:
            raise BadRequest("Provide parentId or slug")
        doc = self.lexical.cache.get().find(parent_id=parent_id, slug=slug)
        if doc is None:
            raise NotFound("Document not found")
        url = doc.url
        base = str(self.cfg["answer"].get("fallback_source_base_url") or "").rstrip("/")
        if not url and doc.slug and base:
            url = f"{base}/{doc.slug}/"
        return {
            "title": doc.title,
            "content": doc.raw_content,
            "url": url,
            "parentId": doc.id,
            "slug": doc.slug or None,
        }


def make_vector_index(cfg: dict) -> VectorIndex:
    vcfg = cfg.get("vector_index", {}) or {}
    backend = str(vcfg.get("backend") or "memory").lower()
    index_dir = Path(cfg["app"]["index_dir"])
    dim = int(cfg["embeddings"]["dimension"])
    if backend == "memory":
        return InMemoryVectorIndex.load(index_dir, dim)
    if backend == "chroma":
        from .index.chroma import ChromaVectorIndex

        return ChromaVectorIndex(str(index_dir / "chroma"), collection=str(vcfg.get("collection") or "kb"))
    raise ConfigError(f"Unsupported vector_index.backend: {backend}")


def persist_index(index: VectorIndex, cfg: dict) -> None:
    # chroma persists on write
    if isinstance(index, InMemoryVectorIndex):
        index.save(Path(cfg["app"]["index_dir"]))


def build_pipeline(
    cfg: dict,
    embedder: Optional[EmbeddingProvider] = None,
    index: Optional[VectorIndex] = None,
    corpus: Optional[CorpusSource] = None,
) -> ChatPipeline:
    cfg = deepcopy(cfg)
    embedder = embedder or make_embedder(cfg)
    index = index if index is not None else make_vector_index(cfg)
    ccfg = cfg["corpus"]
    corpus = corpus or JsonlCorpusSource(ccfg["path"], min_chars=int(ccfg.get("min_chars", 50)))
    cache = LexicalIndexCache(corpus, ttl_seconds=float(ccfg.get("ttl_seconds", 300)))
    lcfg = cfg["lexical"]
    scorer = LexicalScorer(cache, lcfg.get("field_weights"), lcfg.get("phrase_bonus"))
    rr = cfg["reranker"]
    return ChatPipeline(
        embedder=embedder,
        index=index,
        lexical=scorer,
        rewriter=make_rewriter(cfg),
        reranker=make_reranker(rr.get("provider"), model=rr.get("model"), weight=float(rr.get("weight", 0.5))),
        sink=make_sink(cfg),
        cfg=cfg,
    )


def ingest_corpus(
    pipeline: ChatPipeline,
    limit: Optional[int] = None,
    offset: int = 0,
    persist: bool = True,
) -> Dict[str, Any]:
    """Chunk, embed and upsert docs[offset:offset+limit] of the corpus."""
    if offset < 0 or (limit is not None and limit < 0):
        raise BadRequest("limit and offset must be non-negative")
    docs = pipeline.corpus.load()
    if not docs:
        raise NotFound("No documents in corpus")
    total = len(docs)
    end = total if limit is None else offset + limit
    icfg = pipeline.cfg["ingest"]
    stats: IngestStats = ingest_documents(
        docs[offset:end],
        pipeline.embedder,
        pipeline.index,
        max_chars=int(icfg["max_chars"]),
        overlap_sentences=int(icfg["overlap_sentences"]),
        min_chars=int(icfg["min_chars"]),
        source=os.path.basename(str(pipeline.cfg["corpus"]["path"])) or "corpus",
    )
    if persist and stats.upserted:
        persist_index(pipeline.index, pipeline.cfg)
    pipeline.lexical.cache.invalidate()
    return {
        "upserted": stats.upserted,
        "skipped": stats.skipped,
        "offset": offset,
        "limit": limit,
        "total": total,
    }


def health_check(pipeline: ChatPipeline) -> Dict[str, Any]:
    """Probe embeddings and the vector index; failures are reported, not raised."""
    ecfg = pipeline.cfg["embeddings"]
    result: Dict[str, Any] = {
        "env": {
            "has_deepseek_key": bool(os.getenv("DEEPSEEK_API_KEY")),
            "has_openai_key": bool(os.getenv("OPENAI_API_KEY")),
            "embeddings": pipeline.embedder.describe(),
            "vector_index": type(pipeline.index).__name__,
        },
        "embeddings": {},
        "vector_index": {},
    }
    try:
        probe = embed_for_health(pipeline.embedder, "health-check", bool(ecfg.get("allow_pseudo_fallback")))
        vec = probe.pop("vector")
        result["embeddings"] = probe
        try:
            hits = pipeline.index.query(vec, top_k=1, include_values=False)
            result["vector_index"] = {"ok": True, "matches": len(hits), "count": pipeline.index.count()}
        except Exception as e:
            logger.warning("health: vector index probe failed: %s", e)
            result["vector_index"] = {"ok": False, "error": {"type": type(e).__name__, "message": str(e)}}
    except Exception as e:
        logger.warning("health: embedding probe failed: %s", e)
        result["embeddings"] = {"ok": False, "error": {"type": type(e).__name__, "message": str(e)}}
    return result
