"""
Ollama Provider
===============
Run local models: Llama 3, Mistral, Qwen, DeepSeek, etc.
No API key needed. Just install Ollama and pull a model.
Requires: Ollama running at http://localhost:11434
"""

import logging
from typing import Any, Dict, List

import httpx

from .base import BaseLLMProvider, LLMResponse

log = logging.getLogger("outreach.provider.ollama")


class OllamaProvider(BaseLLMProvider):

    def __init__(self, api_key: str = "", model: str = "llama3.1", **kwargs):
        super().__init__(api_key, model, **kwargs)
        self._base_url = kwargs.get("base_url") or "http://localhost:11434"
        self._timeout = kwargs.get("timeout", 120.0)

    def name(self) -> str:
        return f"Ollama ({self.model})"

    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if json_mode:
            body["format"] = "json"

        try:
            resp = httpx.post(
                f"{self._base_url}/api/chat",
                json=body,
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except httpx.ConnectError:
            raise ConnectionError(
                f"Cannot connect to Ollama at {self._base_url}. "
                "Is Ollama running? Start it with: ollama serve"
            )

        data = resp.json()
        message = data.get("message", {})

        return LLMResponse(
            text=message.get("content", ""),
            finish_reason=data.get("done_reason") or "stop",
            usage={
                "prompt_tokens": data.get("prompt_eval_count", 0),
                "completion_tokens": data.get("eval_count", 0),
            },
            raw=data,
        )
