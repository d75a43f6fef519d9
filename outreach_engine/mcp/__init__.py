"""Tool protocol layer: transports, servers, registry, configuration."""
from .registry import ToolRegistry
from .server import McpTool, McpToolServer, ToolServer
from .transport import BaseTransport, HttpTransport, StdioTransport

__all__ = [
    "ToolRegistry", "McpTool", "McpToolServer", "ToolServer",
    "BaseTransport", "HttpTransport", "StdioTransport",
]
