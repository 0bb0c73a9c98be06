"""
Metadata filter expressions for vector queries.

A filter is a small tree of Equals / NotEquals / In / Or / And nodes. The same
tree is evaluated in-process by the in-memory index and translated to the
Chroma ``where`` dialect by the Chroma adapter.

List-valued metadata fields (tags, category_slugs, ...) match an Equals/In
node when any of their elements matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Sequence, Tuple, Union

KB_CATEGORY_SLUGS = ("kb", "knowledge-base")


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any


@dataclass(frozen=True)
class NotEquals:
    field: str
    value: Any


@dataclass(frozen=True)
class In:
    field: str
    values: Tuple[Any, ...]

    def __init__(self, field: str, values: Sequence[Any]):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Or:
    clauses: Tuple["Filter", ...]

    def __init__(self, *clauses: "Filter"):
        object.__setattr__(self, "clauses", tuple(clauses))


@dataclass(frozen=True)
class And:
    clauses: Tuple["Filter", ...]

    def __init__(self, *clauses: "Filter"):
        object.__setattr__(self, "clauses", tuple(clauses))


Filter = Union[Equals, NotEquals, In, Or, And]


def _as_list(v: Any) -> list:
    if isinstance(v, (list, tuple, set, frozenset)):
        return list(v)
    return [v]


def evaluate(expr: Filter | None, metadata: Mapping[str, Any]) -> bool:
    if expr is None:
        return True
    if isinstance(expr, Equals):
        return expr.value in _as_list(metadata.get(expr.field))
    if isinstance(expr, NotEquals):
        return expr.value not in _as_list(metadata.get(expr.field))
    if isinstance(expr, In):
        wanted = set(expr.values)
        return any(v in wanted for v in _as_list(metadata.get(expr.field)))
    if isinstance(expr, Or):
        return any(evaluate(c, metadata) for c in expr.clauses)
    if isinstance(expr, And):
        return all(evaluate(c, metadata) for c in expr.clauses)
    raise TypeError(f"Unsupported filter node: {expr!r}")


def list_flag_key(field: str, value: Any) -> str:
    """Scalar key that stands in for `value in metadata[field]` on stores without list metadata."""
    return f"{field}::{value}"


def to_where(expr: Filter | None, list_fields: frozenset = frozenset()) -> Dict[str, Any] | None:
    """
    Translate to Chroma's where dialect. Fields named in `list_fields` are
    stored flattened as boolean flag keys (see list_flag_key).
    """
    if expr is None:
        return None
    if isinstance(expr, Equals):
        if expr.field in list_fields:
            return {list_flag_key(expr.field, expr.value): {"$eq": True}}
        return {expr.field: {"$eq": expr.value}}
    if isinstance(expr, NotEquals):
        if expr.field in list_fields:
            return {list_flag_key(expr.field, expr.value): {"$ne": True}}
        return {expr.field: {"$ne": expr.value}}
    if isinstance(expr, In):
        if expr.field in list_fields:
            flags = [{list_flag_key(expr.field, v): {"$eq": True}} for v in expr.values]
            return flags[0] if len(flags) == 1 else {"$or": flags}
        return {expr.field: {"$in": list(expr.values)}}
    if isinstance(expr, (Or, And)):
        op = "$or" if isinstance(expr, Or) else "$and"
        parts = [to_where(c, list_fields) for c in expr.clauses]
        parts = [p for p in parts if p]
        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]
        return {op: parts}
    raise TypeError(f"Unsupported filter node: {expr!r}")


def build_chunk_filter(shortlist: Sequence[str] = ()) -> Filter:
    """Chunk records only, no attachments, KB members only, optionally scoped to parents."""
    clauses: list = [
        Equals("doc_type", "chunk"),
        NotEquals("post_type", "attachment"),
        Or(Equals("is_kb", True), In("category_slugs", KB_CATEGORY_SLUGS)),
    ]
    if shortlist:
        clauses.append(In("parent_id", list(shortlist)))
    return And(*clauses)
