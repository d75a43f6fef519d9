"""
Base LLM Provider
=================
Abstract interface for the model backends that propose campaign actions.
Bring your own keys.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class LLMResponse:
    """Normalized response from any LLM provider."""
    text: str = ""
    finish_reason: str = "stop"
    usage: Dict[str, int] = field(default_factory=dict)
    raw: Any = None


class BaseLLMProvider(ABC):
    """Abstract base for LLM providers."""

    def __init__(self, api_key: str = "", model: str = "", **kwargs):
        self.api_key = api_key
        self.model = model
        self.extra_config = kwargs

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        json_mode asks the backend to constrain its output to a single JSON
        object where it supports that.
        """
        pass

    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""
        pass

    def supports_json_mode(self) -> bool:
        """Whether the backend can be asked for strict JSON output."""
        return True
