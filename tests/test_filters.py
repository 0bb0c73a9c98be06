import pytest

from kb_chat.index.chroma import LIST_FIELDS, flatten_metadata, restore_metadata
from kb_chat.index.filters import And, Equals, In, NotEquals, Or, build_chunk_filter, evaluate, to_where


def _meta(**kw):
    m = {
        "doc_type": "chunk",
        "post_type": "post",
        "is_kb": False,
        "category_slugs": ["kb"],
        "parent_id": "1",
    }
    m.update(kw)
    return m


def test_chunk_filter_accepts_kb_chunks():
    f = build_chunk_filter()
    assert evaluate(f, _meta())
    assert evaluate(f, _meta(is_kb=True, category_slugs=[]))
    assert evaluate(f, _meta(category_slugs=["other", "knowledge-base"]))


def test_chunk_filter_rejects():
    f = build_chunk_filter()
    assert not evaluate(f, _meta(doc_type="parent"))
    assert not evaluate(f, _meta(post_type="attachment"))
    assert not evaluate(f, _meta(category_slugs=["news"]))


def test_shortlist_restricts_parents():
    f = build_chunk_filter(["1", "2"])
    assert evaluate(f, _meta(parent_id="2"))
    assert not evaluate(f, _meta(parent_id="3"))


def test_empty_filter_matches_everything():
    assert evaluate(None, {})


def test_unknown_node_raises():
    with pytest.raises(TypeError):
        evaluate("doc_type", {})


def test_to_where_translation():
    where = to_where(build_chunk_filter(["1", "2"]), LIST_FIELDS)
    assert where == {
        "$and": [
            {"doc_type": {"$eq": "chunk"}},
            {"post_type": {"$ne": "attachment"}},
            {
                "$or": [
                    {"is_kb": {"$eq": True}},
                    {
                        "$or": [
                            {"category_slugs::kb": {"$eq": True}},
                            {"category_slugs::knowledge-base": {"$eq": True}},
                        ]
                    },
                ]
            },
            {"parent_id": {"$in": ["1", "2"]}},
        ]
    }


def test_to_where_collapses_single_clause():
    assert to_where(And(Equals("a", 1))) == {"a": {"$eq": 1}}
    assert to_where(Or()) is None
    assert to_where(In("tags", ["x"]), frozenset(["tags"])) == {"tags::x": {"$eq": True}}
    assert to_where(NotEquals("a", 2)) == {"a": {"$ne": 2}}


def test_flattened_metadata_round_trip_and_flags():
    meta = {"parent_id": "1", "tags": ["A b"], "category_slugs": ["kb"], "tag_slugs": [], "url": None}
    flat = flatten_metadata(meta)
    assert flat["category_slugs::kb"] is True
    assert "url" not in flat
    assert restore_metadata(flat) == {"parent_id": "1", "tags": ["A b"], "category_slugs": ["kb"], "tag_slugs": []}
