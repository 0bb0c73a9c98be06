import pytest

from kb_chat.config import DEFAULTS, deep_merge, load_config, parse_weight
from kb_chat.errors import ConfigError

ENV_VARS = [
    "FIELD_WEIGHT_TITLE",
    "FIELD_WEIGHT_SLUG",
    "QUERY_REWRITE_ENABLED",
    "QUERY_REWRITE_PROVIDER",
    "LOG_RETRIEVAL",
    "EMBED_DIM",
    "EMBED_PROVIDER",
    "KB_CORPUS_PATH",
    "LOG_LEVEL",
    "FALLBACK_SOURCE_BASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def test_defaults_without_file(tmp_path):
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


def test_yaml_deep_merges(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("retrieval:\n  mmr:\n    k: 10\nembeddings:\n  provider: http\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg["retrieval"]["mmr"] == {"k": 10, "lambda": 0.5}
    assert cfg["retrieval"]["final_k"] == 12
    assert cfg["embeddings"]["provider"] == "http"


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_field_weight_env(monkeypatch):
    monkeypatch.setenv("FIELD_WEIGHT_TITLE", "-2")
    monkeypatch.setenv("FIELD_WEIGHT_SLUG", "abc")
    cfg = load_config()
    assert cfg["lexical"]["field_weights"]["title"] == 0
    assert cfg["lexical"]["field_weights"]["slug"] == 4


def test_feature_flags_from_env(monkeypatch):
    monkeypatch.setenv("QUERY_REWRITE_ENABLED", "1")
    monkeypatch.setenv("QUERY_REWRITE_PROVIDER", " DeepSeek ")
    monkeypatch.setenv("LOG_RETRIEVAL", "1")
    monkeypatch.setenv("EMBED_DIM", "384")
    monkeypatch.setenv("FALLBACK_SOURCE_BASE_URL", "https://kb.example")
    cfg = load_config()
    assert cfg["rewrite"]["enabled"] is True
    assert cfg["rewrite"]["provider"] == "deepseek"
    assert cfg["telemetry"]["enabled"] is True
    assert cfg["embeddings"]["dimension"] == 384
    assert cfg["answer"]["fallback_source_base_url"] == "https://kb.example"


def test_overrides_and_validation():
    cfg = load_config(overrides={"retrieval": {"max_per_parent": 2}})
    assert cfg["retrieval"]["max_per_parent"] == 2
    with pytest.raises(ConfigError):
        load_config(overrides={"retrieval": {"mmr": {"lambda": 1.5}}})
    with pytest.raises(ConfigError):
        load_config(overrides={"embeddings": {"dimension": 0}})


def test_parse_weight():
    assert parse_weight("3.5", 1) == 3.5
    assert parse_weight("-1", 1) == 0.0
    assert parse_weight(None, 2) == 2
    assert parse_weight("nan", 2) == 2


def test_deep_merge_leaves_inputs_untouched():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    out = deep_merge(base, {"a": {"b": 9}, "e": 4})
    assert out == {"a": {"b": 9, "c": 2}, "d": 3, "e": 4}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}
