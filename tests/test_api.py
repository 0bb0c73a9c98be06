import pytest
import requests
from fastapi.testclient import TestClient

from conftest import FAKE_DIM
from kb_chat.embeddings import HttpEmbeddingProvider
from kb_chat.web.app import create_app


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline=pipeline), raise_server_exceptions=False)


def test_chat_ok(client):
    r = client.post("/chat", json={"query": "how do I reset my password", "sessionId": "s-1"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    data = body["data"]
    assert data["sessionId"] == "s-1"
    assert data["sources"][0]["title"] == "Password Reset Guide"
    assert data["sources"][0]["parentId"] == "101"
    assert 0.24 < data["relevance"] <= 1


def test_chat_generates_session_id(client):
    data = client.post("/chat", json={"query": "billing"}).json()["data"]
    assert data["sessionId"]


def test_chat_missing_query(client):
    r = client.post("/chat", json={})
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": {"code": "BAD_REQUEST", "message": "Missing query"}}


def test_chat_rejects_non_string_query(client):
    r = client.post("/chat", json={"query": ["a"]})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BAD_REQUEST"


def test_wrong_method(client):
    r = client.get("/chat")
    assert r.status_code == 405
    assert r.json() == {"success": False, "error": {"code": "METHOD_NOT_ALLOWED", "message": "Use POST"}}


def test_embedding_failure_is_internal_error(client, pipeline):
    def boom(text):
        raise RuntimeError("provider exploded")

    pipeline.embedder.embed = boom
    r = client.post("/chat", json={"query": "reset password"})
    assert r.status_code == 500
    err = r.json()["error"]
    assert err["code"] == "INTERNAL_ERROR"
    assert err["message"] == "Query embedding failed"


class _UnauthorizedSession:
    def post(self, url, json=None, headers=None, timeout=None):
        raise requests.HTTPError(f"401 Client Error: Unauthorized for url: {url}")


def test_embedding_failure_hides_upstream_details(client, pipeline):
    pipeline.embedder = HttpEmbeddingProvider(api_key="k", dimension=FAKE_DIM, session=_UnauthorizedSession())
    r = client.post("/chat", json={"query": "reset password"})
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Query embedding failed"}}


def test_unexpected_error_is_enveloped(client, pipeline):
    def boom(*a, **kw):
        raise KeyError("surprise")

    pipeline.answer = boom
    r = client.post("/chat", json={"query": "reset password"})
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}


def test_source(client):
    r = client.post("/source", json={"parentId": "101"})
    assert r.status_code == 200
    assert r.json()["data"]["title"] == "Password Reset Guide"
    assert client.post("/source", json={"slug": "missing"}).status_code == 404
    r = client.post("/source", json={})
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Provide parentId or slug"


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["embeddings"]["ok"] is True
    assert data["vector_index"]["count"] == 4


def test_ingest(client):
    r = client.post("/ingest", json={"limit": 1, "offset": 0})
    assert r.status_code == 200
    assert r.json()["data"] == {"upserted": 1, "skipped": 0, "offset": 0, "limit": 1, "total": 4}
    r = client.post("/ingest", json={"limit": -1})
    assert r.status_code == 400
