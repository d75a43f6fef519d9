"""
Tool Server Configuration
=========================
Load tool server declarations from an mcp.json file and build servers from
them. Also provides the built-in provider presets.

Format:
    {
      "servers": {
        "playwright": {"type": "stdio", "command": "npx", "args": ["-y", "@playwright/mcp@latest"]},
        "search":     {"type": "http", "url": "https://search.example.com/mcp",
                       "headers": {"Authorization": "Bearer ${env:SEARCH_TOKEN}"}},
        "files":      {"type": "stdio", "command": "npx",
                       "args": ["@wonderwhy-er/desktop-commander", "--working-directory", "${input:workdir}"],
                       "disabled": true}
      },
      "inputs": [{"id": "workdir", "type": "promptString", "description": "Campaign folder"}]
    }

Placeholders: ${input:<id>} resolves from the inputs mapping passed to the
loader, ${env:<NAME>} from the environment. Unresolved placeholders are left
in place and logged.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .server import McpToolServer
from .transport import HttpTransport, StdioTransport

log = logging.getLogger("outreach.mcp.config")

_INPUT_PATTERN = re.compile(r"\$\{input:([^}]+)\}")
_ENV_PATTERN = re.compile(r"\$\{env:([^}]+)\}")


@dataclass
class McpServerConfig:
    type: str = ""
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    url: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    disabled: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "McpServerConfig":
        data = {str(k).lower(): v for k, v in (data or {}).items()}
        return cls(
            type=str(data.get("type") or ("http" if data.get("url") else "stdio")).lower(),
            command=data.get("command"),
            args=[str(a) for a in data.get("args") or []],
            url=data.get("url"),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            disabled=bool(data.get("disabled", False)),
        )


@dataclass
class McpInput:
    id: str = ""
    type: str = ""
    description: str = ""
    password: bool = False


@dataclass
class McpConfiguration:
    servers: Dict[str, McpServerConfig] = field(default_factory=dict)
    inputs: List[McpInput] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "McpConfiguration":
        servers = data.get("servers") or data.get("mcpServers") or {}
        inputs = []
        for raw in data.get("inputs") or []:
            if isinstance(raw, dict):
                inputs.append(McpInput(
                    id=str(raw.get("id", "")), type=str(raw.get("type", "")),
                    description=str(raw.get("description", "")),
                    password=bool(raw.get("password", False)),
                ))
        return cls(
            servers={name: McpServerConfig.from_dict(cfg) for name, cfg in servers.items()},
            inputs=inputs,
        )


def load_mcp_config(path: str, inputs: Optional[Dict[str, str]] = None) -> McpConfiguration:
    """Read and resolve an mcp.json file. A missing file yields an empty configuration."""
    p = Path(path).expanduser()
    if not p.exists():
        log.warning(f"Tool server configuration not found at {p}")
        return McpConfiguration()

    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid tool server configuration {p}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Invalid tool server configuration {p}: expected an object")

    config = McpConfiguration.from_dict(data)
    _resolve_variables(config, inputs or {})
    log.info(f"Loaded {len(config.servers)} tool server declarations from {p}")
    return config


def _resolve(value: str, inputs: Dict[str, str]) -> str:
    def from_inputs(match):
        key = match.group(1)
        if key in inputs:
            return inputs[key]
        log.warning(f"Input variable {key} not found in provided inputs")
        return match.group(0)

    def from_env(match):
        key = match.group(1)
        resolved = os.environ.get(key)
        if resolved is not None:
            return resolved
        log.warning(f"Environment variable {key} not found")
        return match.group(0)

    value = _INPUT_PATTERN.sub(from_inputs, value)
    return _ENV_PATTERN.sub(from_env, value)


def _resolve_variables(config: McpConfiguration, inputs: Dict[str, str]):
    for server in config.servers.values():
        server.args = [_resolve(a, inputs) for a in server.args]
        server.env = {k: _resolve(v, inputs) for k, v in server.env.items()}
        server.headers = {k: _resolve(v, inputs) for k, v in server.headers.items()}
        if server.url:
            server.url = _resolve(server.url, inputs)
        if server.command:
            server.command = _resolve(server.command, inputs)


def build_server(name: str, cfg: McpServerConfig, timeout: float = 60.0,
                 cwd: Optional[str] = None) -> Optional[McpToolServer]:
    """Build an (unconnected) server for a declaration, or None if it is unusable."""
    if cfg.disabled:
        log.info(f"Tool server {name} is disabled")
        return None
    if cfg.type == "stdio" and cfg.command:
        transport = StdioTransport(cfg.command, cfg.args, env=cfg.env, cwd=cwd)
    elif cfg.type == "http" and cfg.url:
        transport = HttpTransport(cfg.url, headers=cfg.headers, timeout=timeout)
    else:
        log.warning(f"Tool server {name} has unsupported type '{cfg.type}' or missing command/url")
        return None
    return McpToolServer(name, name, transport)


def build_servers(config: McpConfiguration, timeout: float = 60.0,
                  cwd: Optional[str] = None) -> List[McpToolServer]:
    servers = []
    for name, cfg in config.servers.items():
        server = build_server(name, cfg, timeout=timeout, cwd=cwd)
        if server is not None:
            servers.append(server)
    return servers


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

def desktop_commander(working_directory: Optional[str] = None) -> McpToolServer:
    """File system operations and command execution."""
    args = ["-y", "@wonderwhy-er/desktop-commander"]
    if working_directory:
        args += ["--working-directory", working_directory]
    return McpToolServer("desktop-commander", "Desktop Commander", StdioTransport("npx", args))


def playwright(headless: bool = True) -> McpToolServer:
    """Browser automation."""
    args = ["-y", "@playwright/mcp@latest"]
    if headless:
        args.append("--headless")
    return McpToolServer("playwright", "Playwright Browser", StdioTransport("npx", args))


def fetch() -> McpToolServer:
    """Plain web page fetching."""
    return McpToolServer("fetch", "Fetch", StdioTransport("npx", ["-y", "mcp-fetch-server"]))


def exa(api_key: str) -> McpToolServer:
    """Semantic web search. Requires an Exa API key."""
    transport = StdioTransport("npx", ["-y", "exa-mcp-server"], env={"EXA_API_KEY": api_key})
    return McpToolServer("exa", "Exa Web Search", transport)


PRESETS = {
    "desktop-commander": desktop_commander,
    "playwright": playwright,
    "fetch": fetch,
    "exa": exa,
}


def build_preset(name: str, **kwargs: Any) -> McpToolServer:
    factory = PRESETS.get(name)
    if factory is None:
        raise ValueError(f"Unknown tool server preset: {name}. Valid: {', '.join(PRESETS)}")
    return factory(**kwargs)
