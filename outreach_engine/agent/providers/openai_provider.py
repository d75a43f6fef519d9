"""
OpenAI Provider
===============
GPT-4o, GPT-4o-mini, o3, and any OpenAI-compatible endpoint via base_url.
Requires: pip install openai
"""

import logging
from typing import Any, Dict, List

from .base import BaseLLMProvider, LLMResponse

log = logging.getLogger("outreach.provider.openai")


class OpenAIProvider(BaseLLMProvider):

    def __init__(self, api_key: str = "", model: str = "gpt-4o", **kwargs):
        super().__init__(api_key, model, **kwargs)
        self._base_url = kwargs.get("base_url")  # For OpenAI-compatible APIs
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client (reused across calls)."""
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise ImportError("OpenAI provider requires: pip install openai")
            client_kwargs = {"api_key": self.api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._client = OpenAI(**client_kwargs)
        return self._client

    def name(self) -> str:
        return f"OpenAI ({self.model})"

    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = client.chat.completions.create(**kwargs)
        choice = response.choices[0]

        return LLMResponse(
            text=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
            usage={
                "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
                "completion_tokens": response.usage.completion_tokens if response.usage else 0,
            },
            raw=response,
        )
