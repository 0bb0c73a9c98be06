from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Sequence

from ..embeddings import EmbeddingProvider
from ..index.dense import VectorIndex
from ..index.schema import Chunk, ChunkMetadata, Document
from .chunker import chunk_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 1200
DEFAULT_OVERLAP_SENTENCES = 3
DEFAULT_MIN_CHARS = 200


def base_text(doc: Document) -> str:
    return f"{doc.title}\n\n{doc.raw_content}".strip()


def chunk_document(
    doc: Document,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_sentences: int = DEFAULT_OVERLAP_SENTENCES,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> List[Chunk]:
    """Title + content, sentence-chunked; [] when the document is too short to be useful."""
    text = base_text(doc)
    if len(text) < min_chars:
        return []
    pieces = chunk_text(text, max_chars=max_chars, overlap_sentences=overlap_sentences)
    return [
        Chunk(
            parent_id=doc.id,
            index=i,
            total_chunks=len(pieces),
            content=p[:max_chars],
            content_length=len(p),
        )
        for i, p in enumerate(pieces)
    ]


def chunk_metadata(doc: Document, chunk: Chunk, source: str = "corpus") -> ChunkMetadata:
    return ChunkMetadata(
        parent_id=doc.id,
        title=doc.title,
        content=chunk.content,
        category=doc.category,
        tags=list(doc.tags),
        category_slugs=list(doc.category_slugs),
        tag_slugs=list(doc.tag_slugs),
        post_type=doc.post_type,
        chunk_index=chunk.index,
        total_chunks=chunk.total_chunks,
        content_length=chunk.content_length,
        url=doc.url or "",
        slug=doc.slug,
        is_kb=doc.is_kb,
        source=source,
    )


@dataclass
class IngestStats:
    documents: int = 0
    skipped: int = 0
    upserted: int = 0
    seconds: float = 0.0


def ingest_documents(
    docs: Sequence[Document],
    embedder: EmbeddingProvider,
    index: VectorIndex,
    max_chars: int = DEFAULT_MAX_CHARS,
    overlap_sentences: int = DEFAULT_OVERLAP_SENTENCES,
    min_chars: int = DEFAULT_MIN_CHARS,
    source: str = "corpus",
) -> IngestStats:
    t0 = time.perf_counter()
    stats = IngestStats()
    for doc in docs:
        chunks = chunk_document(doc, max_chars=max_chars, overlap_sentences=overlap_sentences, min_chars=min_chars)
        if not chunks:
            stats.skipped += 1
            logger.debug("skipping short document %s", doc.id)
            continue
        vectors = embedder.embed_many([c.content for c in chunks])
        for chunk, vec in zip(chunks, vectors):
            meta = chunk_metadata(doc, chunk, source=source)
            index.upsert(chunk.id, vec, meta.model_dump())
            stats.upserted += 1
        stats.documents += 1
    stats.seconds = time.perf_counter() - t0
    logger.info(
        "ingested %d documents (%d skipped), %d chunks upserted in %.2fs",
        stats.documents,
        stats.skipped,
        stats.upserted,
        stats.seconds,
    )
    return stats
