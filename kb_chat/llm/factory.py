from __future__ import annotations

import os
from typing import Optional

from ..errors import ConfigError
from .base import LLM
from .ollama import OllamaLLM
from .openai_compat import DEEPSEEK_BASE_URL, OPENAI_BASE_URL, OpenAICompatibleLLM

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "deepseek": "deepseek-chat",
    "ollama": "llama3.1:8b",
}


def make_llm(
    backend: str = "ollama",
    model: Optional[str] = None,
    endpoint: Optional[str] = None,
    api_key: Optional[str] = None,
) -> LLM:
    backend = (backend or "ollama").lower()
    model = model or DEFAULT_MODELS.get(backend)

    if backend == "ollama":
        return OllamaLLM(model=model, endpoint=endpoint)

    if backend == "openai":
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ConfigError("openai backend needs OPENAI_API_KEY")
        base = endpoint or os.getenv("OPENAI_BASE_URL") or OPENAI_BASE_URL
        return OpenAICompatibleLLM(api_key=key, model=model, base_url=base)

    if backend == "deepseek":
        key = api_key or os.getenv("DEEPSEEK_API_KEY")
        if not key:
            raise ConfigError("deepseek backend needs DEEPSEEK_API_KEY")
        base = endpoint or os.getenv("DEEPSEEK_BASE_URL") or DEEPSEEK_BASE_URL
        return OpenAICompatibleLLM(api_key=key, model=model, base_url=base)

    raise ConfigError(f"Unsupported LLM backend: {backend}")
