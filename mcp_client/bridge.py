"""
Bridge between registered MCP servers and LangChain.

Turns each tool of each connected server into a LangChain
StructuredTool whose invocation is a tools/call round trip through the
ConnectionRegistry.

Usage:
    from mcp_client.bridge import mcp_to_langchain_tool, langchain_tools

    # Single tool
    lc_tool = mcp_to_langchain_tool(registry, "echo", "echo")

    # All tools from all connected servers
    tools = langchain_tools(registry)
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_client.connection import McpTool
from mcp_client.errors import McpClientError
from mcp_client.registry import ConnectionRegistry


def mcp_to_langchain_tool(
    registry: ConnectionRegistry,
    server_id: str,
    tool_name: str,
    description_override: str | None = None,
    tool: McpTool | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that wraps an MCP tool call.

    Args:
        registry: The registry holding the server's connection
        server_id: Which server the tool lives on
        tool_name: The tool name (as advertised by the server)
        description_override: Optional override for the tool description
        tool: The tool's discovery entry; looked up in the registry's
              catalog when omitted

    Returns:
        A StructuredTool that proxies calls to the MCP server.
    """
    if tool is None:
        tool = next(
            (t for t in registry.catalog.tools(server_id) if t.name == tool_name), None
        )

    if tool and tool.description:
        description = description_override or tool.description
    else:
        description = description_override or f"MCP tool: {server_id}/{tool_name}"

    def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to MCP server."""
        try:
            result = registry.call_tool(server_id, tool_name, kwargs)
        except McpClientError as e:
            return f"Error calling {server_id}/{tool_name}: {e}"
        return result_text(result)

    # The server's JSON schema is passed through as-is
    args_schema = (tool.input_schema if tool else None) or {"type": "object", "properties": {}}

    return StructuredTool.from_function(
        func=_call_mcp,
        name=tool_name,
        description=description,
        args_schema=args_schema,
    )


def langchain_tools(registry: ConnectionRegistry) -> list[StructuredTool]:
    """
    Discover tools on every connected server and wrap them all.

    Tool names are prefixed with the server id (``server__tool``) when
    two servers advertise the same name.
    """
    discovered = {
        sid: tools
        for sid, tools in registry.list_all_tools().items()
        if registry.is_connected(sid)
    }
    counts: dict[str, int] = {}
    for tools in discovered.values():
        for tool in tools:
            counts[tool.name] = counts.get(tool.name, 0) + 1

    wrapped = []
    for server_id, tools in discovered.items():
        registry.catalog.replace_tools(server_id, tools)
        for tool in tools:
            lc_tool = mcp_to_langchain_tool(registry, server_id, tool.name, tool=tool)
            if counts[tool.name] > 1:
                lc_tool.name = f"{server_id}__{tool.name}"
            wrapped.append(lc_tool)
    return wrapped


def result_text(result: Any) -> str:
    """Flatten a tools/call result to text for an LLM."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            block.get("text", "")
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        if texts:
            return "\n".join(texts)
    return json.dumps(result, indent=2)
