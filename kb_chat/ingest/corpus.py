"""
Corpus sources: where knowledge-base documents come from.

A record is a plain dict (one JSON object per line in a JSONL export):

    {"id": "42", "title": "...", "content": "<p>html or text</p>", "slug": "...",
     "post_type": "post", "status": "publish", "url": "https://...",
     "categories": [{"name": "Knowledge Base", "slug": "kb"}],
     "tags": [{"name": "Password", "slug": "password"}]}

Categories and tags may also be given as bare strings (names); their slugs are
then derived from the names.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..index.schema import Document
from .clean import normalize_text, strip_html

logger = logging.getLogger(__name__)

SKIP_POST_TYPES = frozenset(
    [
        "attachment",
        "revision",
        "nav_menu_item",
        "shop_order",
        "shop_order_refund",
        "shop_coupon",
        "product",
        "product_variation",
    ]
)
SKIP_STATUSES = frozenset(["trash", "draft", "auto-draft"])
KB_SLUG = "kb"
KB_CATEGORY_NAME = "knowledge base"


def _slugify(s: str) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", s.strip().lower())
    return s.strip("-")


def _terms(raw: Any) -> Tuple[List[str], List[str]]:
    """-> (names, slugs) for a categories/tags field."""
    if not raw:
        return [], []
    items = raw if isinstance(raw, list) else [raw]
    names: List[str] = []
    slugs: List[str] = []
    for it in items:
        if isinstance(it, dict):
            name = str(it.get("name") or it.get("value") or "")
            slug = str(it.get("slug") or it.get("nicename") or "").lower()
        else:
            name = str(it)
            slug = _slugify(name)
        if name:
            names.append(name)
        if slug:
            slugs.append(slug)
    return names, slugs


def is_kb_record(category: str, category_slugs: List[str], tag_slugs: List[str]) -> bool:
    return (
        KB_SLUG in category_slugs
        or KB_SLUG in tag_slugs
        or category.strip().lower() == KB_CATEGORY_NAME
    )


def document_from_record(record: Dict[str, Any], min_chars: int = 50) -> Optional[Document]:
    """Apply the inclusion filters; None when the record must not be indexed."""
    post_type = str(record.get("post_type") or "post")
    status = str(record.get("status") or "publish").lower()
    if post_type in SKIP_POST_TYPES or status in SKIP_STATUSES:
        return None

    categories, category_slugs = _terms(record.get("categories"))
    tags, tag_slugs = _terms(record.get("tags"))
    category = categories[0] if categories else str(record.get("category") or "")
    if not is_kb_record(category, category_slugs, tag_slugs) and not record.get("is_kb"):
        return None

    title = str(record.get("title") or "").strip()
    raw = str(record.get("content") or "")
    content = strip_html(raw) if "<" in raw else normalize_text(raw)
    if len((title + content).strip()) < min_chars:
        return None

    doc_id = str(record.get("id") or "").strip()
    if not doc_id:
        return None
    return Document(
        id=doc_id,
        title=title,
        raw_content=content,
        slug=str(record.get("slug") or ""),
        category=category,
        category_slugs=category_slugs,
        tags=tags,
        tag_slugs=tag_slugs,
        url=(str(record["url"]) if record.get("url") else None),
        post_type=post_type,
        is_kb=True,
    )


def documents_from_records(records: Iterable[Dict[str, Any]], min_chars: int = 50) -> List[Document]:
    docs: List[Document] = []
    for rec in records:
        doc = document_from_record(rec, min_chars=min_chars)
        if doc is not None:
            docs.append(doc)
    return docs


class CorpusSource(ABC):
    @abstractmethod
    def load(self) -> List[Document]:
        """Return the full current snapshot of indexable documents."""
        ...


class StaticCorpusSource(CorpusSource):
    def __init__(self, docs: Iterable[Document]):
        self._docs = list(docs)

    def load(self) -> List[Document]:
        return list(self._docs)


class JsonlCorpusSource(CorpusSource):
    def __init__(self, path: str | Path, min_chars: int = 50):
        self.path = Path(path)
        self.min_chars = min_chars

    def records(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            logger.warning("corpus file not found: %s", self.path)
            return []
        out: List[Dict[str, Any]] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for i, ln in enumerate(f, start=1):
                s = ln.strip()
                if not s:
                    continue
                try:
                    out.append(json.loads(s))
                except json.JSONDecodeError as e:
                    raise ValueError(f"Failed to parse JSONL line {i} in {self.path}: {e}") from e
        return out

    def load(self) -> List[Document]:
        docs = documents_from_records(self.records(), min_chars=self.min_chars)
        logger.info("corpus loaded: %d documents from %s", len(docs), self.path)
        return docs
