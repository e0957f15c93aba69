"""
MCP server base class (stdio transport).

A server is a standalone process that:
1. Reads JSON-RPC messages from stdin, one per line
2. Answers the initialize handshake and ignores notifications
3. Dispatches tool calls to registered ToolHandlers
4. Writes JSON-RPC responses to stdout, one per line

To create a server:

    from mcp_client.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }

        def handle(self, params: dict) -> dict:
            return {"result": f"processed: {params['input']}"}

    if __name__ == "__main__":
        server = StdioToolServer("my-server")
        server.register(MyTool())
        server.run()

stdout carries protocol traffic only, and the client merges stderr into
the same stream, so handlers must not print.
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given arguments.

        Returns:
            Either a ready MCP result ({"content": [...]}) or any
            JSON-serializable value, which is wrapped as text content.
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool entry for tools/list."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


class ResourceHandler:
    """A readable item advertised through resources/list."""

    def __init__(self, uri: str, name: str, description: str = "", mime_type: str = "text/plain"):
        self.uri = uri
        self.name = name
        self.description = description
        self.mime_type = mime_type

    def get_schema(self) -> dict:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


class StdioToolServer:
    """
    JSON-RPC MCP server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize"      → protocol version, capabilities, server info
        - "ping"            → empty result
        - "tools/list"      → {"tools": [...]}
        - "tools/call"      → {"content": [...], "isError": false}
        - "resources/list"  → {"resources": [...]}
    - Messages without an id are notifications and get no reply
    """

    protocol_version = "2024-11-05"

    def __init__(self, name: str = "mcp-server", version: str = "1.0.0"):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}
        self._resources: dict[str, ResourceHandler] = {}
        self.client_info: dict | None = None

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def add_resource(self, resource: ResourceHandler) -> None:
        self._resources[resource.uri] = resource

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Main loop: read messages, dispatch, write responses.

        This blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"Server {self.name} starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in stdin:
            line = line.strip()
            if not line:
                continue
            response = self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response) + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> dict | None:
        """Process one incoming line; returns the response, or None for notifications."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            return _error(None, PARSE_ERROR, f"Parse error: {e}")
        if not isinstance(message, dict):
            return _error(None, PARSE_ERROR, "Message must be a JSON object")

        request_id = message.get("id")
        method = message.get("method", "")
        params = message.get("params") or {}

        if request_id is None:
            logger.debug(f"Notification: {method}")
            return None

        try:
            return _result(request_id, self._dispatch(method, params))
        except _RpcException as e:
            return _error(request_id, e.code, str(e))
        except Exception as e:
            return _error(request_id, INTERNAL_ERROR, str(e))

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            self.client_info = params.get("clientInfo")
            return {
                "protocolVersion": self.protocol_version,
                "capabilities": {"tools": {}, "resources": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "resources/list":
            return {"resources": [r.get_schema() for r in self._resources.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            tool_params = params.get("arguments") or {}

            handler = self._handlers.get(tool_name)
            if not handler:
                raise _RpcException(
                    INVALID_PARAMS,
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}",
                )

            return _as_content(handler.handle(tool_params))

        raise _RpcException(METHOD_NOT_FOUND, f"Unknown method: '{method}'")


class _RpcException(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code


def _as_content(value: Any) -> dict:
    if isinstance(value, dict) and "content" in value:
        return value
    text = value if isinstance(value, str) else json.dumps(value)
    return {"content": [{"type": "text", "text": text}], "isError": False}


def _result(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
