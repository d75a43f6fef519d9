"""LLM providers. Bring your own keys."""
from .base import BaseLLMProvider, LLMResponse
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .ollama_provider import OllamaProvider

__all__ = [
    "BaseLLMProvider", "LLMResponse",
    "OpenAIProvider", "AnthropicProvider", "OllamaProvider",
]
