from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional

from ..ingest.corpus import CorpusSource
from ..tokenize import lexical_terms
from .schema import Document, LexicalHit

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: Dict[str, float] = {"title": 5, "slug": 4, "category": 3, "tags": 3, "content": 1}
DEFAULT_PHRASE_BONUS: Dict[str, float] = {"title": 10, "slug": 8, "content": 3}
DEFAULT_TTL_SECONDS = 300.0


class _Fields(NamedTuple):
    title: str
    slug: str
    category: str
    tags: str
    content: str


def _lower_fields(d: Document) -> _Fields:
    return _Fields(
        title=d.title.lower(),
        slug=d.slug.lower(),
        category=" ".join(d.category_slugs).lower(),
        tags=" ".join(d.tag_slugs).lower(),
        content=d.raw_content.lower(),
    )


@dataclass
class LexicalIndex:
    docs: List[Document] = field(default_factory=list)
    document_frequency: Dict[str, int] = field(default_factory=dict)
    document_count: int = 0
    loaded_at: float = 0.0
    fields: List[_Fields] = field(default_factory=list, repr=False)

    def find(self, parent_id: Optional[str] = None, slug: Optional[str] = None) -> Optional[Document]:
        for d in self.docs:
            if (parent_id and d.id == str(parent_id)) or (slug and d.slug == str(slug)):
                return d
        return None


def build_lexical_index(docs: List[Document], loaded_at: float) -> LexicalIndex:
    df: Dict[str, int] = {}
    for d in docs:
        text = " ".join(
            [d.title, d.slug, " ".join(d.category_slugs), " ".join(d.tag_slugs), " ".join(d.tags), d.raw_content]
        )
        for t in set(lexical_terms(text)):
            df[t] = df.get(t, 0) + 1
    return LexicalIndex(
        docs=list(docs),
        document_frequency=df,
        document_count=len(docs),
        loaded_at=loaded_at,
        fields=[_lower_fields(d) for d in docs],
    )


def idf(term: str, n_docs: int, df: Dict[str, int]) -> float:
    n = df.get(term, 0)
    return math.log(1 + (n_docs - n + 0.5) / (n + 0.5))


class LexicalIndexCache:
    """
    Process-wide lexical snapshot, rebuilt wholesale from the corpus source
    once older than `ttl_seconds` (or while empty).

    Readers get whatever snapshot is current; a rebuild swaps the reference
    in one assignment. Only one thread rebuilds at a time.
    """

    def __init__(
        self,
        source: CorpusSource,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._snapshot: Optional[LexicalIndex] = None
        self._rebuild_lock = threading.Lock()

    def _is_fresh(self, snap: Optional[LexicalIndex], ttl: float) -> bool:
        return snap is not None and snap.document_count > 0 and (self.clock() - snap.loaded_at) < ttl

    def refresh(self, ttl: Optional[float] = None, force: bool = False) -> LexicalIndex:
        ttl = self.ttl_seconds if ttl is None else ttl
        snap = self._snapshot
        if not force and self._is_fresh(snap, ttl):
            return snap
        with self._rebuild_lock:
            snap = self._snapshot
            if not force and self._is_fresh(snap, ttl):
                return snap
            t0 = time.perf_counter()
            docs = self.source.load()
            new = build_lexical_index(docs, loaded_at=self.clock())
            self._snapshot = new
            logger.info(
                "lexical index rebuilt: %d docs, %d terms in %d ms",
                new.document_count,
                len(new.document_frequency),
                int((time.perf_counter() - t0) * 1000),
            )
            return new

    def get(self) -> LexicalIndex:
        return self.refresh()

    def invalidate(self) -> None:
        self._snapshot = None


class LexicalScorer:
    def __init__(
        self,
        cache: LexicalIndexCache,
        field_weights: Optional[Dict[str, float]] = None,
        phrase_bonus: Optional[Dict[str, float]] = None,
    ):
        self.cache = cache
        self.field_weights = {**DEFAULT_FIELD_WEIGHTS, **(field_weights or {})}
        self.phrase_bonus = {**DEFAULT_PHRASE_BONUS, **(phrase_bonus or {})}

    def _term_weight(self, f: _Fields, term: str) -> float:
        w = self.field_weights
        weight = 0.0
        if term in f.title:
            weight += w["title"]
        if term in f.slug:
            weight += w["slug"]
        if term in f.category:
            weight += w["category"]
        if term in f.tags:
            weight += w["tags"]
        if term in f.content:
            weight += w["content"]
        return weight

    def _phrase_score(self, f: _Fields, phrase: str) -> float:
        if len(phrase) < 3:
            return 0.0
        if phrase in f.title:
            return self.phrase_bonus["title"]
        if phrase in f.slug:
            return self.phrase_bonus["slug"]
        if phrase in f.content:
            return self.phrase_bonus["content"]
        return 0.0

    def score_index(self, index: LexicalIndex, query: str, limit: int = 50) -> List[LexicalHit]:
        if not index.docs:
            return []
        terms = lexical_terms(query)
        phrase = str(query or "").lower().strip()
        n_docs = index.document_count
        idfs = {t: idf(t, n_docs, index.document_frequency) for t in terms}

        hits: List[LexicalHit] = []
        for d, f in zip(index.docs, index.fields):
            score = 0.0
            for t in terms:
                weight = self._term_weight(f, t)
                if weight > 0:
                    score += weight * idfs[t]
            score += self._phrase_score(f, phrase)
            if score > 0:
                hits.append(LexicalHit(parent_id=d.id, slug=d.slug, title=d.title, score=score))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def search(self, query: str, limit: int = 50) -> List[LexicalHit]:
        return self.score_index(self.cache.get(), query, limit=limit)
