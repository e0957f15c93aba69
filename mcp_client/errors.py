"""
Error taxonomy for the MCP client.

Every error optionally names the server it concerns, so callers can
report "which server, what went wrong" without extra bookkeeping:

    McpClientError
    ├── ConfigError          duplicate id at register time, bad settings
    ├── McpConnectionError   spawn failure, rejected handshake, I/O during connect
    ├── ProtocolError        malformed/missing response line, stream closed, timeout
    ├── ToolError            server answered a tool request with an RPC error
    ├── ResourceError        server answered a resource request with an RPC error
    └── NotFoundError        unknown or currently-disconnected server id
"""

from __future__ import annotations

from typing import Any


class McpClientError(Exception):
    """Base class for all MCP client errors."""

    def __init__(self, message: str, server_id: str | None = None):
        self.server_id = server_id
        self.message = message
        if server_id:
            message = f"[{server_id}] {message}"
        super().__init__(message)


class ConfigError(McpClientError):
    pass


class McpConnectionError(McpClientError):
    pass


class ProtocolError(McpClientError):
    pass


class NotFoundError(McpClientError):
    pass


class _RpcFailure(McpClientError):
    """An error the server reported in a response's ``error`` field."""

    def __init__(
        self,
        message: str,
        server_id: str | None = None,
        code: int | None = None,
        data: Any = None,
    ):
        super().__init__(message, server_id)
        self.code = code
        self.data = data


class ToolError(_RpcFailure):
    pass


class ResourceError(_RpcFailure):
    pass
