# llm/ollama.py
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import requests

from ..errors import upstream_from_requests
from .base import LLM

DEFAULT_OLLAMA = "http://localhost:11434"


def _normalize_endpoint(ep: Optional[str]) -> str:
    """endpoint > OLLAMA_HOST > default; ensure scheme; strip trailing slash."""
    cand = (ep or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA).strip()
    if not re.match(r"^https?://", cand):
        cand = "http://" + cand
    return cand.rstrip("/")


class OllamaLLM(LLM):
    """
    Minimal Ollama client for short, non-streaming /api/chat calls.

        llm = OllamaLLM(model="llama3.1:8b", endpoint="http://localhost:11434")
        llm.chat(messages, temperature=0.2, max_tokens=128, timeout=8)
    """

    def __init__(
        self,
        model: str = "llama3.1:8b",
        endpoint: Optional[str] = None,
        keep_alive: Optional[str] = None,
        session: Optional[requests.Session] = None,
        **_: Any,
    ) -> None:
        self.model = model
        self.base = _normalize_endpoint(endpoint)
        self.keep_alive = keep_alive
        self.session = session or requests.Session()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 128,
        timeout: Optional[float] = None,
    ) -> str:
        url = f"{self.base}/api/chat"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            # Ollama uses num_predict for the token limit
            "options": {"temperature": float(temperature), "num_predict": int(max_tokens)},
        }
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive

        try:
            r = self.session.post(url, json=payload, timeout=timeout or 8.0)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise upstream_from_requests(e, "ollama chat") from e
        # Common shapes:
        #  - {"message":{"role":"assistant","content":"..."}}
        #  - {"response":"..."} (older/alt shape)
        msg = data.get("message", {})
        if isinstance(msg, dict) and "content" in msg:
            return str(msg["content"] or "")
        return str(data.get("response", "") or "")
