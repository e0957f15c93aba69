"""Reference MCP servers, runnable with ``python -m mcp_client.servers.<name>``."""
