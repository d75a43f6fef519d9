"""
Configuration
=============
Load settings from outreach-engine.yaml, env vars, or CLI args.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from pathlib import Path

import yaml

log = logging.getLogger("outreach.config")

CONFIG_FILENAME = "outreach-engine.yaml"
CONFIG_SEARCH_PATHS = [
    Path.cwd() / CONFIG_FILENAME,
    Path.home() / ".config" / "outreach-engine" / CONFIG_FILENAME,
    Path.home() / ".outreach-engine" / CONFIG_FILENAME,
]

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-5-20250929",
    "ollama": "llama3.1",
}


@dataclass
class Config:
    """Engine configuration."""
    # LLM provider
    provider: str = "openai"  # openai, anthropic, ollama
    model: str = ""           # Provider-specific model name
    api_key: str = ""         # API key (or set via env var)
    temperature: float = 0.2
    max_tokens: int = 2048

    # Ollama
    ollama_base_url: str = "http://localhost:11434"

    # OpenAI-compatible
    base_url: str = ""  # For custom OpenAI-compatible endpoints

    # Scheduler
    polling_interval: float = 60.0
    max_concurrent_campaigns: int = 1

    # Controller
    proposal_attempts: int = 3
    proposal_backoff: float = 2.0

    # Tool servers
    tool_timeout: float = 60.0
    mcp_config: str = ""  # Path to mcp.json
    mcp_inputs: Dict[str, str] = field(default_factory=dict)

    # Storage
    store_dir: str = ""

    # Notifications
    notification_webhook: str = ""

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, env vars, or defaults."""
        config = cls()

        # Try YAML file
        yaml_path = Path(path).expanduser() if path else None
        if not yaml_path:
            for search_path in CONFIG_SEARCH_PATHS:
                if search_path.exists():
                    yaml_path = search_path
                    break

        if yaml_path and yaml_path.exists():
            config._load_yaml(yaml_path)
            log.info(f"Loaded config from {yaml_path}")

        # Env vars override YAML
        config._load_env()

        if not config.model:
            config.model = DEFAULT_MODELS.get(config.provider, "gpt-4o")

        return config

    def _load_yaml(self, path: Path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            log.warning(f"Ignoring {path}: expected a mapping at top level")
            return

        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                log.warning(f"Unknown config key ignored: {key}")

    def _load_env(self):
        """Override with environment variables."""
        # Provider-specific key detection
        if os.getenv("OPENAI_API_KEY") and not os.getenv("OUTREACH_PROVIDER"):
            self.provider = "openai"
            self.api_key = os.getenv("OPENAI_API_KEY", "")
        elif os.getenv("ANTHROPIC_API_KEY") and not os.getenv("OUTREACH_PROVIDER"):
            self.provider = "anthropic"
            self.api_key = os.getenv("ANTHROPIC_API_KEY", "")

        # Explicit overrides
        if os.getenv("OUTREACH_PROVIDER"):
            self.provider = os.getenv("OUTREACH_PROVIDER", self.provider)
        if os.getenv("OUTREACH_API_KEY"):
            self.api_key = os.getenv("OUTREACH_API_KEY", self.api_key)
        if os.getenv("OUTREACH_MODEL"):
            self.model = os.getenv("OUTREACH_MODEL", self.model)
        if os.getenv("OUTREACH_POLLING_INTERVAL"):
            self.polling_interval = float(os.environ["OUTREACH_POLLING_INTERVAL"])
        if os.getenv("OUTREACH_MAX_CONCURRENT_CAMPAIGNS"):
            self.max_concurrent_campaigns = int(os.environ["OUTREACH_MAX_CONCURRENT_CAMPAIGNS"])
        if os.getenv("OUTREACH_STORE_DIR"):
            self.store_dir = os.getenv("OUTREACH_STORE_DIR", self.store_dir)
        if os.getenv("OUTREACH_MCP_CONFIG"):
            self.mcp_config = os.getenv("OUTREACH_MCP_CONFIG", self.mcp_config)
        if os.getenv("OUTREACH_WEBHOOK_URL"):
            self.notification_webhook = os.getenv("OUTREACH_WEBHOOK_URL", self.notification_webhook)

    def create_provider(self):
        """Create an LLM provider from config."""
        from .agent.providers import AnthropicProvider, OllamaProvider, OpenAIProvider

        kwargs = {}
        if self.base_url:
            kwargs["base_url"] = self.base_url

        if self.provider == "openai":
            return OpenAIProvider(api_key=self.api_key, model=self.model, **kwargs)
        elif self.provider == "anthropic":
            return AnthropicProvider(api_key=self.api_key, model=self.model, **kwargs)
        elif self.provider == "ollama":
            kwargs["base_url"] = self.ollama_base_url
            return OllamaProvider(api_key="", model=self.model, **kwargs)
        else:
            raise ValueError(f"Unknown provider: {self.provider}. "
                             f"Valid: openai, anthropic, ollama")

    def create_notifier(self):
        """Log sink, plus a webhook sink when a URL is configured."""
        from .notifications import CompositeNotifier, LogNotifier, WebhookNotifier

        if not self.notification_webhook:
            return LogNotifier()
        return CompositeNotifier([LogNotifier(), WebhookNotifier(self.notification_webhook)])
