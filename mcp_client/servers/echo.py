"""
Echo MCP Server: minimal reference implementation.

Use this as a template for building new servers. It answers the MCP
handshake, offers a "ping" and an "echo" tool and one resource, which
is enough to exercise every client operation.

Launch:
    python -m mcp_client.servers.echo

Test:
    echo '{"jsonrpc":"2.0","method":"tools/list","id":1}' | python -m mcp_client.servers.echo
"""

from mcp_client.server import ResourceHandler, StdioToolServer, ToolHandler


class PingTool(ToolHandler):
    name = "ping"
    description = "Replies with pong. Useful for health checks."

    def handle(self, params: dict) -> str:
        return "pong"


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = params.get("message", "")
        return {"echoed": message, "length": len(message)}


def build_server() -> StdioToolServer:
    server = StdioToolServer("echo", "1.0.0")
    server.register(PingTool())
    server.register(EchoTool())
    server.add_resource(
        ResourceHandler(
            uri="echo://readme",
            name="readme",
            description="What the echo server does",
        )
    )
    return server


if __name__ == "__main__":
    build_server().run()
