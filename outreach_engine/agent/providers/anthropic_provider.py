"""
Anthropic Provider
==================
Claude Sonnet, Haiku, Opus.
Requires: pip install anthropic
"""

import logging
from typing import Any, Dict, List

from .base import BaseLLMProvider, LLMResponse

log = logging.getLogger("outreach.provider.anthropic")


class AnthropicProvider(BaseLLMProvider):

    def __init__(self, api_key: str = "", model: str = "claude-sonnet-4-5-20250929", **kwargs):
        super().__init__(api_key, model, **kwargs)
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError("Anthropic provider requires: pip install anthropic")
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def name(self) -> str:
        return f"Anthropic ({self.model})"

    def supports_json_mode(self) -> bool:
        # No response_format switch; the instruction goes into the system prompt
        return False

    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        client = self._get_client()

        # Anthropic takes the system prompt as a separate parameter
        system_text = ""
        chat_messages = []
        for msg in messages:
            if msg["role"] == "system":
                content = msg["content"]
                system_text += (content if isinstance(content, str) else str(content)) + "\n"
            else:
                chat_messages.append(msg)

        if json_mode:
            system_text += "Respond with a single JSON object and nothing else.\n"

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": chat_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_text.strip():
            kwargs["system"] = system_text.strip()

        response = client.messages.create(**kwargs)

        text_parts = [block.text for block in response.content if block.type == "text"]

        return LLMResponse(
            text="\n".join(text_parts),
            finish_reason=response.stop_reason or "end_turn",
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            },
            raw=response,
        )
