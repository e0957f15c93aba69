import io
import json

from mcp_client.server import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ResourceHandler,
    StdioToolServer,
    ToolHandler,
)
from mcp_client.servers.echo import build_server


class FailingTool(ToolHandler):
    name = "fail"
    description = "Always raises"

    def handle(self, params):
        raise RuntimeError("nope")


def request(server, method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return server.handle_line(json.dumps(message))


def test_initialize_reports_server_info():
    server = build_server()
    response = request(server, "initialize", {"protocolVersion": "2024-11-05", "clientInfo": {"name": "c", "version": "1"}})
    assert response["result"]["protocolVersion"] == "2024-11-05"
    assert response["result"]["serverInfo"] == {"name": "echo", "version": "1.0.0"}
    assert server.client_info == {"name": "c", "version": "1"}


def test_notifications_get_no_reply():
    server = build_server()
    assert server.handle_line('{"jsonrpc":"2.0","method":"notifications/initialized"}') is None


def test_tools_list_schema():
    response = request(build_server(), "tools/list")
    echo = response["result"]["tools"][1]
    assert echo["name"] == "echo"
    assert echo["inputSchema"]["required"] == ["message"]
    assert echo["inputSchema"]["properties"]["message"]["type"] == "string"


def test_resources_list():
    server = StdioToolServer()
    server.add_resource(ResourceHandler("mem://a", "a", "first", "application/json"))
    response = request(server, "resources/list")
    assert response["result"] == {
        "resources": [{"uri": "mem://a", "name": "a", "description": "first", "mimeType": "application/json"}]
    }


def test_tool_results_are_wrapped_as_text_content():
    response = request(build_server(), "tools/call", {"name": "ping", "arguments": {}})
    assert response["result"] == {"content": [{"type": "text", "text": "pong"}], "isError": False}


def test_errors():
    server = StdioToolServer()
    server.register(FailingTool())
    assert server.handle_line("{nope")["error"]["code"] == PARSE_ERROR
    assert request(server, "bogus")["error"]["code"] == METHOD_NOT_FOUND
    assert request(server, "tools/call", {"name": "missing"})["error"]["code"] == INVALID_PARAMS
    failed = request(server, "tools/call", {"name": "fail"}, request_id=9)
    assert failed["id"] == 9
    assert failed["error"]["message"] == "nope"


def test_run_loop_writes_one_line_per_request():
    stdin = io.StringIO(
        '{"jsonrpc":"2.0","id":1,"method":"ping"}\n'
        "\n"
        '{"jsonrpc":"2.0","method":"notifications/initialized"}\n'
        '{"jsonrpc":"2.0","id":2,"method":"tools/list"}\n'
    )
    stdout = io.StringIO()
    build_server().run(stdin, stdout)
    lines = stdout.getvalue().splitlines()
    assert [json.loads(line)["id"] for line in lines] == [1, 2]
