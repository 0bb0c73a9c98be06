import hashlib
import sys
from pathlib import Path
from typing import List

import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# Ensure repo root is on sys.path so `import kb_chat` works without installing.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from kb_chat.app import ChatPipeline, ingest_corpus  # noqa: E402
from kb_chat.config import DEFAULTS  # noqa: E402
from kb_chat.embeddings import EmbeddingProvider  # noqa: E402
from kb_chat.index.dense import InMemoryVectorIndex  # noqa: E402
from kb_chat.index.lexical import LexicalIndexCache, LexicalScorer  # noqa: E402
from kb_chat.index.schema import Document  # noqa: E402
from kb_chat.ingest.corpus import StaticCorpusSource  # noqa: E402
from kb_chat.tokenize import lexical_terms  # noqa: E402
from kb_chat.utils.log import MemorySink  # noqa: E402

FAKE_DIM = 256


class HashingEmbedder(EmbeddingProvider):
    """Bag of hashed lexical terms: cosine similarity tracks term overlap."""

    def __init__(self, dimension: int = FAKE_DIM):
        self.dimension = dimension
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vec = [0.0] * self.dimension
        for t in lexical_terms(text):
            bucket = int(hashlib.sha1(t.encode("utf-8")).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        return vec


def _doc(id, title, slug, content, category="Knowledge Base", category_slugs=("kb",), tags=(), tag_slugs=()):
    return Document(
        id=id,
        title=title,
        raw_content=content,
        slug=slug,
        category=category,
        category_slugs=list(category_slugs),
        tags=list(tags),
        tag_slugs=list(tag_slugs),
    )


SAMPLE_DOCS = [
    _doc(
        "101",
        "Password Reset Guide",
        "password-reset-guide",
        "This guide shows how to reset your password when you cannot sign in. "
        "Open the login page and choose Forgot password. "
        "We email you a secure link to reset the password for my account settings. "
        "The link expires after 30 minutes, so do it right away. "
        "Pick a new password with at least twelve characters.",
        tags=["Account", "Password"],
        tag_slugs=["account", "password"],
    ),
    _doc(
        "102",
        "Billing and Subscription Plans",
        "billing-and-subscription-plans",
        "Every workspace has a subscription plan billed monthly or yearly. "
        "Invoices are sent to the billing contact on the first day of the cycle. "
        "Upgrades take effect immediately and are prorated. "
        "Downgrades apply at the end of the current billing period. "
        "Contact support to change the billing contact.",
        tags=["Billing"],
        tag_slugs=["billing"],
    ),
    _doc(
        "103",
        "Installing the Desktop App",
        "installing-the-desktop-app",
        "Download the installer for Windows or macOS from the downloads page. "
        "Run the installer and follow the setup wizard. "
        "Administrator rights are required on managed machines. "
        "After installation, sign in with your workspace address. "
        "Updates are installed automatically in the background.",
        tags=["Desktop"],
        tag_slugs=["desktop"],
    ),
    _doc(
        "104",
        "API Token Authentication",
        "api-token-authentication",
        "Requests to the REST API must carry a personal access token. "
        "Create tokens under Developer settings and copy them once. "
        "Send the token in the Authorization header as a bearer credential. "
        "Tokens can be revoked at any time from the same screen. "
        "Rotate tokens regularly and never commit them to source control.",
        tags=["API"],
        tag_slugs=["api"],
    ),
]


@pytest.fixture
def sample_docs():
    return list(SAMPLE_DOCS)


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def pipeline_cfg(tmp_path):
    cfg = {
        "app": {"index_dir": str(tmp_path / "index")},
        "corpus": {"path": str(tmp_path / "corpus.jsonl")},
        "embeddings": {"dimension": FAKE_DIM},
    }
    return cfg


@pytest.fixture
def telemetry():
    return MemorySink()


@pytest.fixture
def pipeline(sample_docs, embedder, pipeline_cfg, telemetry):
    index = InMemoryVectorIndex(FAKE_DIM)
    cache = LexicalIndexCache(StaticCorpusSource(sample_docs))
    scorer = LexicalScorer(cache, DEFAULTS["lexical"]["field_weights"], DEFAULTS["lexical"]["phrase_bonus"])
    p = ChatPipeline(embedder=embedder, index=index, lexical=scorer, sink=telemetry, cfg=pipeline_cfg)
    ingest_corpus(p, persist=False)
    return p
