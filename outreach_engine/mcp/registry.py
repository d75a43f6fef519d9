"""
Tool Registry
=============
Aggregates tool servers into one catalog. Handles registration, discovery,
lookup, structural parameter validation, and call routing.

The registry owns the servers registered with it: close() disconnects all of
them. It never retries; provider failures propagate to the caller.
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from ..errors import RegistryError, ToolExecutionError
from .server import McpTool, ToolServer

log = logging.getLogger("outreach.mcp.registry")


class ToolRegistry:
    """
    Manage tool servers for the engine.

    Usage:
        registry = ToolRegistry()
        registry.register(server)          # server already connected
        tools = registry.discover_tools()  # live catalog
        registry.call_tool("read_file", {"path": "leads.csv"})
        registry.close()
    """

    def __init__(self):
        self._servers: "OrderedDict[str, ToolServer]" = OrderedDict()
        self._lock = threading.Lock()

    def register(self, server: ToolServer):
        """Register a single server. Ids must be unique."""
        with self._lock:
            if server.id in self._servers:
                raise RegistryError(f"Tool server with ID '{server.id}' is already registered")
            self._servers[server.id] = server
        log.info(f"Tool server registered: {server.id}")

    def unregister(self, server_id: str) -> ToolServer:
        with self._lock:
            server = self._servers.pop(server_id, None)
        if server is None:
            raise RegistryError(f"Tool server with ID '{server_id}' is not registered")
        log.info(f"Tool server unregistered: {server_id}")
        return server

    def all(self) -> List[ToolServer]:
        with self._lock:
            return list(self._servers.values())

    def discover_tools(self) -> List[McpTool]:
        """Union of every server's catalog, in registration order."""
        tools: List[McpTool] = []
        for server in self.all():
            tools.extend(server.list_tools())
        log.debug(f"Discovered {len(tools)} tools across {len(self._servers)} servers")
        return tools

    def find_tool(self, name: str) -> Optional[McpTool]:
        tool, _ = self._locate(name)
        return tool

    def validate(self, tool: McpTool, params: Any) -> bool:
        """Every schema-required field must be present. Types are not checked."""
        if not isinstance(params, dict):
            return False
        return all(field in params for field in tool.required_parameters)

    def missing_parameters(self, tool: McpTool, params: Any) -> List[str]:
        if not isinstance(params, dict):
            return tool.required_parameters
        return [field for field in tool.required_parameters if field not in params]

    def call_tool(self, name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke a tool on the first server that exposes it."""
        tool, server = self._locate(name)
        if server is None:
            raise ToolExecutionError(f"No registered server provides tool '{name}'", tool_name=name)
        return server.call_tool(tool.name, params)

    def close(self):
        """Disconnect and drop every registered server."""
        for server in self.all():
            try:
                server.disconnect()
            except Exception as e:
                log.warning(f"Error disconnecting tool server {server.id}: {e}")
        with self._lock:
            self._servers.clear()

    def _locate(self, name: str) -> Tuple[Optional[McpTool], Optional[ToolServer]]:
        for server in self.all():
            for tool in server.list_tools():
                if tool.name == name:
                    return tool, server
        return None, None
