from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class LLM(ABC):
    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 128,
        timeout: Optional[float] = None,
    ) -> str:
        """Return the assistant message text for one non-streaming chat call."""
        ...
