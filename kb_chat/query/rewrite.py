"""
Retrieval-only query rewriting.

The rewritten query only steers lexical and dense retrieval; coverage, phrase
matching and the answer text always use what the user typed. Every provider
output passes through ``validate_rewrite`` and every failure falls back to
the keyword heuristic, so a misbehaving LLM can never drop the user's intent.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import ConfigError
from ..llm.base import LLM
from ..llm.factory import make_llm
from ..tokenize import lexical_terms, normalize_spaces

logger = logging.getLogger(__name__)

MAX_HEURISTIC_TERMS = 24

SYSTEM_PROMPT = (
    "You rewrite user questions into concise, retrieval-optimized search queries. "
    "Keep entities, add missing context only if implicit, avoid changing intent. "
    "Output a single line without quotes."
)
USER_PROMPT = "Rewrite for retrieval only, preserve intent:\n{query}"

PROVIDERS = ("", "auto", "heuristic", "openai", "deepseek", "ollama")


def heuristic_rewrite(query: str) -> str:
    terms = lexical_terms(query)
    if not terms:
        return query
    return " ".join(terms[:MAX_HEURISTIC_TERMS])


def validate_rewrite(candidate: Optional[str], original: str) -> str:
    if not candidate or not isinstance(candidate, str):
        return original
    trimmed = candidate.strip().strip('"').strip()
    if len(trimmed) < 3:
        return original
    if normalize_spaces(trimmed) == normalize_spaces(original):
        return original
    # must share a term with the original
    if not set(lexical_terms(trimmed)) & set(lexical_terms(original)):
        return original
    return trimmed


class RewriteProvider(ABC):
    @abstractmethod
    def rewrite(self, query: str, timeout: float) -> str:
        ...


class LLMRewriteProvider(RewriteProvider):
    def __init__(self, llm: LLM, temperature: float = 0.2, max_tokens: int = 128):
        self.llm = llm
        self.temperature = temperature
        self.max_tokens = max_tokens

    def rewrite(self, query: str, timeout: float) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": USER_PROMPT.format(query=query)},
        ]
        return self.llm.chat(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=timeout,
        )


class QueryRewriter:
    def __init__(self, provider: Optional[RewriteProvider] = None, enabled: bool = False, timeout: float = 8.0):
        self.provider = provider
        self.enabled = enabled
        self.timeout = timeout

    def rewrite(self, query: str) -> str:
        original = str(query or "").strip()
        if not self.enabled or not original:
            return original
        if self.provider is None:
            out = heuristic_rewrite(original)
        else:
            try:
                out = validate_rewrite(self.provider.rewrite(original, self.timeout), original)
            except Exception as e:
                logger.warning("query rewrite failed, using heuristic: %s", e)
                out = heuristic_rewrite(original)
        if len(out) < 3:
            return original
        if out != original:
            logger.debug("query rewritten", extra={"original": original, "rewritten": out})
        return out


def _auto_backend() -> Optional[str]:
    if os.getenv("DEEPSEEK_API_KEY"):
        return "deepseek"
    if os.getenv("OPENAI_API_KEY"):
        return "openai"
    return None


def make_rewriter(cfg: dict) -> QueryRewriter:
    rcfg = cfg.get("rewrite", {}) or {}
    enabled = bool(rcfg.get("enabled", False))
    timeout = float(rcfg.get("timeout", 8))
    name = str(rcfg.get("provider") or "").strip().lower()
    if name not in PROVIDERS:
        raise ConfigError(f"Unsupported rewrite.provider: {name}")
    if not enabled:
        return QueryRewriter(None, enabled=False, timeout=timeout)

    backend = _auto_backend() if name in ("", "auto") else (None if name == "heuristic" else name)
    if backend is None:
        logger.info("query rewrite enabled without an LLM provider; using heuristic rewrite")
        return QueryRewriter(None, enabled=True, timeout=timeout)

    try:
        llm = make_llm(backend, model=rcfg.get("model"), endpoint=rcfg.get("endpoint"))
    except ConfigError as e:
        # missing API key: rewriting still works, just heuristically
        logger.warning("rewrite provider %s unavailable (%s); using heuristic rewrite", backend, e.message)
        return QueryRewriter(None, enabled=True, timeout=timeout)
    provider = LLMRewriteProvider(
        llm,
        temperature=float(rcfg.get("temperature", 0.2)),
        max_tokens=int(rcfg.get("max_tokens", 128)),
    )
    return QueryRewriter(provider, enabled=True, timeout=timeout)
