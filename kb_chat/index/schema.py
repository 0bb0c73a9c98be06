from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """One knowledge-base entry (HTML already stripped from raw_content)."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    raw_content: str = ""
    slug: str = ""
    category: str = ""
    category_slugs: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    tag_slugs: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    post_type: str = "post"
    is_kb: bool = True


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    parent_id: str
    index: int                 # 0-based position within the parent
    total_chunks: int
    content: str
    content_length: int

    @property
    def id(self) -> str:
        return f"{self.parent_id}#{self.index}"


class ChunkMetadata(BaseModel):
    """Metadata stored beside each chunk vector; filters evaluate against it."""

    parent_id: str
    title: str = ""
    content: str = ""
    category: str = ""
    tags: List[str] = Field(default_factory=list)
    category_slugs: List[str] = Field(default_factory=list)
    tag_slugs: List[str] = Field(default_factory=list)
    doc_type: str = "chunk"
    post_type: str = "post"
    chunk_index: int = 0
    total_chunks: int = 1
    content_length: int = 0
    url: str = ""
    slug: str = ""
    is_kb: bool = False
    source: str = "corpus"


class LexicalHit(BaseModel):
    parent_id: str
    slug: str = ""
    title: str = ""
    score: float


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    values: Optional[List[float]] = None


class ScoredCandidate(BaseModel):
    """A dense match after hybrid fusion; lives for one request only."""

    id: str
    score: float                       # combined score, always in [0, 1]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector: Optional[List[float]] = None
    vector_score: float = 0.0
    lexical_score_normalized: float = 0.0
    coverage_ratio: float = 0.0
    phrase_hit: bool = False

    @property
    def parent_id(self) -> str:
        return str(self.metadata.get("parent_id") or self.id)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "")

    @property
    def content(self) -> str:
        return str(self.metadata.get("content") or "")


class SourceCitation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    id: str
    score: float
    url: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    slug: Optional[str] = None
    snippet: str = ""
