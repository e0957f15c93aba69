"""
MCP stdio client: discover and invoke tools/resources on child processes.

Architecture:
    ┌───────────────────┐               ┌──────────────┐
    │ ConnectionRegistry│ ── stdio ───► │  MCP server  │
    │  ServerConnection │   JSON-RPC    │ (subprocess) │
    └───────────────────┘     pipes     └──────────────┘
             ▲
             │ call_tool
    ┌───────────────────┐
    │   ToolJobRunner   │  background jobs, results in a JobStore
    └───────────────────┘

Each server is a standalone process speaking line-delimited JSON-RPC 2.0
(the MCP protocol) on stdin/stdout. ServerConnection owns one process
and performs the handshake and strictly sequential round trips. The
ConnectionRegistry tracks live connections by id and routes calls.

The LangChain bridge is imported lazily so the core has no LangChain
dependency at import time.
"""

from mcp_client.connection import (
    ConnectionConfig,
    ConnectionState,
    McpResource,
    McpTool,
    ServerConnection,
)
from mcp_client.errors import (
    ConfigError,
    McpClientError,
    McpConnectionError,
    NotFoundError,
    ProtocolError,
    ResourceError,
    ToolError,
)
from mcp_client.jobs import JobStatus, ToolJob, ToolJobRunner
from mcp_client.registry import ConnectionRegistry, ServerInfo
from mcp_client.settings import ClientSettings

__version__ = "0.1.0"


# Imported lazily: only the bridge needs langchain
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_client.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def langchain_tools(*args, **kwargs):
    from mcp_client.bridge import langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "ClientSettings",
    "ConfigError",
    "ConnectionConfig",
    "ConnectionRegistry",
    "ConnectionState",
    "JobStatus",
    "McpClientError",
    "McpConnectionError",
    "McpResource",
    "McpTool",
    "NotFoundError",
    "ProtocolError",
    "ResourceError",
    "ServerConnection",
    "ServerInfo",
    "ToolError",
    "ToolJob",
    "ToolJobRunner",
    "langchain_tools",
    "mcp_to_langchain_tool",
]
