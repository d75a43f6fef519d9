"""
Tool Servers
============
A tool server wraps one transport, performs the protocol handshake, and
exposes discovery and invocation in a normalized form.

Every provider (desktop file operations, browser automation, web search, or
anything declared in mcp.json) is an McpToolServer value built around a
different transport. The registry only ever sees the ToolServer interface.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import __version__
from ..errors import ToolExecutionError, TransportError
from .transport import BaseTransport

log = logging.getLogger("outreach.mcp.server")

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "outreach-engine", "version": __version__}


@dataclass
class McpTool:
    """A tool as discovered from a provider. Never persisted."""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)
    server_id: str = ""

    @property
    def required_parameters(self) -> List[str]:
        required = self.input_schema.get("required") if isinstance(self.input_schema, dict) else None
        if not isinstance(required, list):
            return []
        return [r for r in required if isinstance(r, str)]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description,
                "inputSchema": self.input_schema}


class ToolServer(ABC):
    """Capability interface shared by every tool provider."""

    @property
    @abstractmethod
    def id(self) -> str:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    def connect(self):
        pass

    @abstractmethod
    def disconnect(self):
        pass

    @abstractmethod
    def list_tools(self) -> List[McpTool]:
        pass

    @abstractmethod
    def call_tool(self, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        pass


class McpToolServer(ToolServer):
    """
    JSON-RPC tool server over any transport.

    Usage:
        server = McpToolServer("exa", "Exa Web Search", StdioTransport("npx", ["-y", "exa-mcp-server"]))
        server.connect()
        server.list_tools()
        server.call_tool("web_search_exa", {"query": "fintech CTOs"})
    """

    def __init__(self, server_id: str, name: str, transport: BaseTransport):
        self._id = server_id
        self._name = name or server_id
        self.transport = transport
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self.server_info: Dict[str, Any] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    def connect(self):
        log.info(f"Connecting to tool server: {self.name}")
        self.transport.connect()
        response = self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        if "error" in response:
            raise TransportError(
                f"Handshake with {self.name} failed: {_error_message(response['error'])}"
            )
        self.server_info = (response.get("result") or {}).get("serverInfo", {})
        self.transport.notify({"jsonrpc": "2.0", "method": "notifications/initialized"})
        log.info(f"Tool server initialized: {self.name}")

    def disconnect(self):
        log.info(f"Disconnecting tool server: {self.name}")
        self.transport.disconnect()

    def list_tools(self) -> List[McpTool]:
        response = self._request("tools/list", {})
        if "error" in response:
            raise ToolExecutionError(
                f"Tool listing failed on {self.name}: {_error_message(response['error'])}",
                server_id=self.id,
            )

        tools = []
        for raw in (response.get("result") or {}).get("tools", []) or []:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            schema = raw.get("inputSchema")
            tools.append(McpTool(
                name=str(raw["name"]),
                description=str(raw.get("description") or ""),
                input_schema=schema if isinstance(schema, dict) else {},
                server_id=self.id,
            ))

        log.info(f"Retrieved {len(tools)} tools from {self.name}")
        return tools

    def call_tool(self, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        log.info(f"Calling tool {name} on {self.name}")
        response = self._request("tools/call", {"name": name, "arguments": params or {}})

        if "error" in response:
            raise ToolExecutionError(
                f"Tool call failed: {_error_message(response['error'])}",
                tool_name=name, server_id=self.id,
            )

        result = response.get("result") or {}
        if isinstance(result, dict) and result.get("isError"):
            raise ToolExecutionError(
                f"Tool call failed: {content_text(result) or 'tool reported an error'}",
                tool_name=name, server_id=self.id,
            )
        return result

    def _request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        with self._id_lock:
            request_id = next(self._ids)
        return self.transport.send({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        })


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown error")
    return str(error) if error else "Unknown error"


def content_text(result: Optional[Dict[str, Any]]) -> str:
    """Join the text blocks of a tools/call result."""
    if not isinstance(result, dict):
        return ""
    parts = []
    for block in result.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "\n".join(parts)
