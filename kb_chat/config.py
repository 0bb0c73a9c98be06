from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError

DEFAULTS: Dict[str, Any] = {
    "app": {
        "index_dir": "index",
        "log_level": "INFO",
    },
    "corpus": {
        "path": "data/corpus.jsonl",
        "ttl_seconds": 300,
        "min_chars": 50,
    },
    "ingest": {
        "max_chars": 1200,
        "overlap_sentences": 3,
        "min_chars": 200,
    },
    "embeddings": {
        # pseudo | http | fastembed
        "provider": "pseudo",
        "dimension": 1024,
        "base_url": "https://api.deepseek.com/v1",
        "model": "deepseek-embedding-v1",
        "timeout": 20,
        "cache_size": 200,
        "allow_pseudo_fallback": False,
    },
    "vector_index": {
        # memory | chroma
        "backend": "memory",
        "collection": "kb",
    },
    "lexical": {
        "limit": 50,
        "shortlist_size": 25,
        "field_weights": {"title": 5, "slug": 4, "category": 3, "tags": 3, "content": 1},
        "phrase_bonus": {"title": 10, "slug": 8, "content": 3},
    },
    "rewrite": {
        "enabled": False,
        # "" = auto (deepseek key, then openai key, else heuristic) | openai | deepseek | ollama
        "provider": "",
        "timeout": 8,
        "max_tokens": 128,
        "temperature": 0.2,
        "model": None,
        "endpoint": None,
    },
    "retrieval": {
        "top_k": {"short": 80, "medium": 60, "long": 40},
        "thresholds": {"short": 0.24, "medium": 0.28, "long": 0.30},
        "fusion": {
            "vector": 0.6,
            "coverage": 0.25,
            "lexical": 0.12,
            "phrase": 0.08,
            "shortlist_bonus": 0.03,
        },
        "mmr": {"k": 30, "lambda": 0.5},
        "max_per_parent": 3,
        "final_k": 12,
    },
    "reranker": {
        # none | cross-encoder
        "provider": "none",
        "model": "BAAI/bge-reranker-base",
        "weight": 0.5,
    },
    "answer": {
        "synthesis_chars": 480,
        "max_groups": 3,
        "max_overlap_terms": 6,
        "snippet_chars": 160,
        "fallback_source_base_url": "",
    },
    "telemetry": {
        "enabled": False,
        "path": "logs/retrieval.log.jsonl",
    },
}

_FIELD_WEIGHT_ENV = {
    "title": "FIELD_WEIGHT_TITLE",
    "slug": "FIELD_WEIGHT_SLUG",
    "category": "FIELD_WEIGHT_CATEGORY",
    "tags": "FIELD_WEIGHT_TAGS",
    "content": "FIELD_WEIGHT_CONTENT",
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def parse_weight(value: Any, fallback: float) -> float:
    """Non-numeric -> fallback, negative -> 0."""
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if n != n or n in (float("inf"), float("-inf")):
        return fallback
    return max(0.0, n)


def _apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    weights = cfg["lexical"]["field_weights"]
    for field, var in _FIELD_WEIGHT_ENV.items():
        raw = os.getenv(var)
        if raw is not None:
            weights[field] = parse_weight(raw, weights.get(field, 0))

    if os.getenv("LOG_LEVEL"):
        cfg["app"]["log_level"] = os.environ["LOG_LEVEL"]
    if os.getenv("QUERY_REWRITE_ENABLED") is not None:
        cfg["rewrite"]["enabled"] = os.environ["QUERY_REWRITE_ENABLED"] == "1"
    if os.getenv("QUERY_REWRITE_PROVIDER") is not None:
        cfg["rewrite"]["provider"] = os.environ["QUERY_REWRITE_PROVIDER"].strip().lower()
    if os.getenv("LOG_RETRIEVAL") is not None:
        cfg["telemetry"]["enabled"] = os.environ["LOG_RETRIEVAL"] == "1"
    if os.getenv("FALLBACK_SOURCE_BASE_URL") is not None:
        cfg["answer"]["fallback_source_base_url"] = os.environ["FALLBACK_SOURCE_BASE_URL"]
    if os.getenv("EMBED_PROVIDER"):
        cfg["embeddings"]["provider"] = os.environ["EMBED_PROVIDER"].strip().lower()
    if os.getenv("EMBED_DIM"):
        try:
            dim = int(os.environ["EMBED_DIM"])
        except ValueError:
            dim = 0
        if dim > 0:
            cfg["embeddings"]["dimension"] = dim
    if os.getenv("KB_CORPUS_PATH"):
        cfg["corpus"]["path"] = os.environ["KB_CORPUS_PATH"]
    return cfg


def _validate(cfg: Dict[str, Any]) -> None:
    if int(cfg["embeddings"]["dimension"]) <= 0:
        raise ConfigError("embeddings.dimension must be positive")
    lam = float(cfg["retrieval"]["mmr"]["lambda"])
    if not 0.0 <= lam <= 1.0:
        raise ConfigError("retrieval.mmr.lambda must be within [0, 1]")
    if int(cfg["retrieval"]["max_per_parent"]) < 1:
        raise ConfigError("retrieval.max_per_parent must be >= 1")


def load_config(path: str | Path | None = None, overrides: Optional[Dict[str, Any]] = None) -> dict:
    """
    Defaults <- YAML file (if given and present) <- overrides <- environment.
    """
    file_cfg: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "r", encoding="utf-8") as f:
                file_cfg = yaml.safe_load(f) or {}
            if not isinstance(file_cfg, dict):
                raise ConfigError(f"Config file {p} must contain a mapping")
    cfg = deep_merge(DEFAULTS, file_cfg)
    if overrides:
        cfg = deep_merge(cfg, overrides)
    cfg = _apply_env(cfg)
    _validate(cfg)
    return cfg
