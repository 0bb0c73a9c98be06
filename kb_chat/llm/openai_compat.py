from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ..errors import UpstreamError, upstream_from_requests
from .base import LLM

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"


class OpenAICompatibleLLM(LLM):
    """/chat/completions client for OpenAI and API-compatible hosts (DeepSeek)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = OPENAI_BASE_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.url = base_url.rstrip("/") + "/chat/completions"
        self.session = session or requests.Session()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 128,
        timeout: Optional[float] = None,
    ) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "temperature": float(temperature),
            "max_tokens": int(max_tokens),
            "messages": messages,
        }
        try:
            r = self.session.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=timeout or 8.0,
            )
            r.raise_for_status()
            data = r.json() or {}
        except requests.RequestException as e:
            raise upstream_from_requests(e, "chat completion") from e
        except ValueError as e:
            raise UpstreamError("chat completion response is not JSON") from e

        try:
            return str(data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError("unexpected chat completion shape", details={"keys": sorted(data)}) from e
