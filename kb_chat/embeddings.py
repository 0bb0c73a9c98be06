from __future__ import annotations

import hashlib
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import requests

from .errors import ConfigError, UpstreamError, upstream_from_requests

logger = logging.getLogger(__name__)

DEFAULT_DIM = 1024


def ensure_dim(vec: Sequence[float], dim: int) -> List[float]:
    """Truncate or zero-pad to exactly `dim` values."""
    out = [float(x) for x in vec[:dim]]
    if len(out) < dim:
        out.extend([0.0] * (dim - len(out)))
    return out


def pseudo_vector(text: str, dim: int = DEFAULT_DIM) -> List[float]:
    """Deterministic stand-in embedding for dev/health-check use; values in [0, 1)."""
    out: List[float] = []
    for i in range(dim):
        h = hashlib.sha1(f"{text}{i}".encode("utf-8", errors="ignore")).digest()
        out.append((int.from_bytes(h[:4], "big") % 100) / 100)
    return out


class EmbeddingProvider(ABC):
    dimension: int = DEFAULT_DIM

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Return a vector of exactly `self.dimension` floats."""
        ...

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.__class__.__name__, "dimension": self.dimension}


class PseudoEmbeddingProvider(EmbeddingProvider):
    def __init__(self, dimension: int = DEFAULT_DIM):
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        return pseudo_vector(text, self.dimension)


class HttpEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI-compatible /embeddings endpoint (DeepSeek by default).

    Accepts `data[0].embedding`, `data[0].vector` or `data[0].values` in the
    response body; anything else is an UpstreamError.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepseek.com/v1",
        model: str = "deepseek-embedding-v1",
        dimension: int = DEFAULT_DIM,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.url = base_url.rstrip("/") + "/embeddings"
        self.model = model
        self.dimension = dimension
        self.timeout = timeout
        self.session = session or requests.Session()

    def embed(self, text: str) -> List[float]:
        if not isinstance(text, str) or not text:
            raise ValueError("embed requires a non-empty string")
        try:
            r = self.session.post(
                self.url,
                json={"model": self.model, "input": [text]},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json() or {}
        except requests.RequestException as e:
            raise upstream_from_requests(e, "embedding request") from e
        except ValueError as e:
            raise UpstreamError("embedding response is not JSON") from e

        first = (data.get("data") or [{}])[0] or {}
        vec = first.get("embedding") or first.get("vector") or first.get("values")
        if not isinstance(vec, list) or not vec:
            raise UpstreamError("invalid embeddings response", details={"keys": sorted(first)})
        return ensure_dim(vec, self.dimension)

    def describe(self) -> Dict[str, Any]:
        return {**super().describe(), "url": self.url, "model": self.model}


class FastEmbedProvider(EmbeddingProvider):
    def __init__(self, model: str = "BAAI/bge-small-en-v1.5", dimension: int = DEFAULT_DIM):
        from fastembed import TextEmbedding

        self.model_name = model
        self.dimension = dimension
        self.model = TextEmbedding(model_name=model)

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        vecs = [np.asarray(v, dtype="float32") for v in self.model.embed(list(texts))]
        return [ensure_dim(v.tolist(), self.dimension) for v in vecs]


class EmbeddingCache:
    """Bounded insertion-ordered cache; evicts the oldest entry past `capacity`."""

    def __init__(self, capacity: int = 200):
        self.capacity = capacity
        self._data: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8", errors="ignore")).hexdigest()

    def get(self, text: str) -> Optional[List[float]]:
        with self._lock:
            return self._data.get(self.key(text))

    def put(self, text: str, vec: List[float]) -> None:
        with self._lock:
            self._data[self.key(text)] = vec
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class CachedEmbedder(EmbeddingProvider):
    def __init__(self, inner: EmbeddingProvider, cache: Optional[EmbeddingCache] = None):
        self.inner = inner
        self.dimension = inner.dimension
        self.cache = cache or EmbeddingCache()

    def embed(self, text: str) -> List[float]:
        hit = self.cache.get(text)
        if hit is not None:
            return hit
        vec = self.inner.embed(text)
        self.cache.put(text, vec)
        return vec

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        # bulk ingestion bypasses the hot-query cache
        return self.inner.embed_many(texts)

    def describe(self) -> Dict[str, Any]:
        return {**self.inner.describe(), "cached": len(self.cache)}


def make_embedder(cfg: dict) -> EmbeddingProvider:
    ecfg = cfg.get("embeddings", {}) or {}
    provider = str(ecfg.get("provider") or "pseudo").lower()
    dim = int(ecfg.get("dimension", DEFAULT_DIM))

    if provider == "pseudo":
        inner: EmbeddingProvider = PseudoEmbeddingProvider(dim)
    elif provider == "http":
        api_key = os.getenv("EMBED_API_KEY") or os.getenv("DEEPSEEK_API_KEY")
        if not api_key:
            if not ecfg.get("allow_pseudo_fallback", False):
                raise ConfigError("embeddings.provider=http needs EMBED_API_KEY or DEEPSEEK_API_KEY")
            logger.warning("no embedding API key; using pseudo vectors (dev mode)")
            inner = PseudoEmbeddingProvider(dim)
        else:
            inner = HttpEmbeddingProvider(
                api_key=api_key,
                base_url=str(ecfg.get("base_url") or "https://api.deepseek.com/v1"),
                model=str(ecfg.get("model") or "deepseek-embedding-v1"),
                dimension=dim,
                timeout=float(ecfg.get("timeout", 20)),
            )
    elif provider == "fastembed":
        inner = FastEmbedProvider(model=str(ecfg.get("model") or "BAAI/bge-small-en-v1.5"), dimension=dim)
    else:
        raise ConfigError(f"Unsupported embeddings.provider: {provider}")

    return CachedEmbedder(inner, EmbeddingCache(int(ecfg.get("cache_size", 200))))


def embed_for_health(embedder: EmbeddingProvider, text: str, allow_pseudo: bool) -> Dict[str, Any]:
    """Probe the provider; in degraded configs fall back to a pseudo vector instead of failing."""
    try:
        v = embedder.embed(text)
        return {"ok": True, "dimension": len(v), "vector": v}
    except UpstreamError as e:
        if not allow_pseudo:
            raise
        logger.warning("health embedding failed, using pseudo vector: %s", e)
        v = pseudo_vector(text, embedder.dimension)
        return {"ok": False, "degraded": True, "dimension": len(v), "vector": v}
