import pytest
import requests

from kb_chat.embeddings import (
    CachedEmbedder,
    EmbeddingCache,
    HttpEmbeddingProvider,
    PseudoEmbeddingProvider,
    embed_for_health,
    ensure_dim,
    make_embedder,
    pseudo_vector,
)
from kb_chat.errors import ConfigError, UpstreamError, UpstreamTimeout


class _Resp:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self.payload


class _Session:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class _Counting(PseudoEmbeddingProvider):
    def __init__(self, dimension=8):
        super().__init__(dimension)
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        return super().embed(text)


def test_ensure_dim_pads_and_truncates():
    assert ensure_dim([1, 2], 4) == [1.0, 2.0, 0.0, 0.0]
    assert ensure_dim([1, 2, 3, 4, 5], 3) == [1.0, 2.0, 3.0]


def test_pseudo_vector_is_deterministic():
    v = pseudo_vector("health-check", 16)
    assert v == pseudo_vector("health-check", 16)
    assert len(v) == 16
    assert all(0.0 <= x < 1.0 for x in v)
    assert v != pseudo_vector("other", 16)


def test_cache_evicts_oldest():
    cache = EmbeddingCache(capacity=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("c", [3.0])
    assert cache.get("a") is None
    assert cache.get("b") == [2.0]
    assert len(cache) == 2


def test_cache_keys_on_full_text():
    prefix = "x" * 300
    inner = _Counting()
    emb = CachedEmbedder(inner, EmbeddingCache(10))
    a = emb.embed(prefix + " alpha")
    b = emb.embed(prefix + " beta")
    assert a != b
    emb.embed(prefix + " alpha")
    assert inner.calls == 2


def test_http_provider_parses_embedding():
    session = _Session(_Resp({"data": [{"embedding": [0.5, 0.25]}]}))
    p = HttpEmbeddingProvider("k", base_url="https://emb.example/v1/", dimension=4, session=session)
    assert p.embed("hello") == [0.5, 0.25, 0.0, 0.0]
    call = session.calls[0]
    assert call["url"] == "https://emb.example/v1/embeddings"
    assert call["headers"]["Authorization"] == "Bearer k"
    assert call["timeout"] == 20.0


def test_http_provider_accepts_alternate_keys():
    session = _Session(_Resp({"data": [{"values": [1, 2, 3]}]}))
    p = HttpEmbeddingProvider("k", dimension=2, session=session)
    assert p.embed("hello") == [1.0, 2.0]


def test_http_provider_errors():
    p = HttpEmbeddingProvider("k", dimension=2, session=_Session(_Resp({"data": [{}]})))
    with pytest.raises(UpstreamError):
        p.embed("hello")
    p = HttpEmbeddingProvider("k", dimension=2, session=_Session(requests.Timeout("slow")))
    with pytest.raises(UpstreamTimeout):
        p.embed("hello")
    p = HttpEmbeddingProvider("k", dimension=2, session=_Session(_Resp({}, status=500)))
    with pytest.raises(UpstreamError):
        p.embed("hello")


def test_make_embedder_requires_key_for_http(monkeypatch):
    monkeypatch.delenv("EMBED_API_KEY", raising=False)
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        make_embedder({"embeddings": {"provider": "http", "dimension": 8}})
    emb = make_embedder({"embeddings": {"provider": "http", "dimension": 8, "allow_pseudo_fallback": True}})
    assert isinstance(emb.inner, PseudoEmbeddingProvider)
    assert len(emb.embed("x")) == 8


def test_make_embedder_with_key(monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "secret")
    emb = make_embedder({"embeddings": {"provider": "http", "dimension": 8}})
    assert isinstance(emb.inner, HttpEmbeddingProvider)
    assert emb.inner.api_key == "secret"


def test_make_embedder_unknown_provider():
    with pytest.raises(ConfigError):
        make_embedder({"embeddings": {"provider": "word2vec"}})


def test_health_embedding_falls_back_to_pseudo():
    p = HttpEmbeddingProvider("k", dimension=4, session=_Session(requests.ConnectionError("down")))
    out = embed_for_health(p, "health-check", allow_pseudo=True)
    assert out["degraded"] is True
    assert out["vector"] == pseudo_vector("health-check", 4)
    with pytest.raises(UpstreamError):
        embed_for_health(p, "health-check", allow_pseudo=False)
