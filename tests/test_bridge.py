import json

import pytest

pytest.importorskip("langchain_core")

from mcp_client.bridge import langchain_tools, mcp_to_langchain_tool, result_text  # noqa: E402
from mcp_client.connection import ConnectionConfig  # noqa: E402


def test_wraps_every_connected_tool(registry, echo_config):
    registry.register(echo_config)
    tools = {t.name: t for t in langchain_tools(registry)}

    assert set(tools) == {"ping", "echo"}
    assert tools["echo"].description == "Echoes back the input message. Useful for testing."
    assert json.loads(tools["echo"].invoke({"message": "hi"})) == {"echoed": "hi", "length": 2}
    assert tools["ping"].invoke({}) == "pong"


def test_duplicate_tool_names_are_prefixed(registry, echo_config):
    registry.register(echo_config)
    second = ConnectionConfig(
        id="echo2",
        command=echo_config.command,
        args=echo_config.args,
        working_directory=echo_config.working_directory,
    )
    registry.register(second)

    names = sorted(t.name for t in langchain_tools(registry))
    assert names == ["echo2__echo", "echo2__ping", "echo__echo", "echo__ping"]


def test_errors_become_text(registry):
    tool = mcp_to_langchain_tool(registry, "missing", "anything")
    assert tool.description == "MCP tool: missing/anything"
    assert "Server not found: missing" in tool.invoke({})


def test_result_text():
    assert result_text("plain") == "plain"
    assert result_text({"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}) == "a\nb"
    assert json.loads(result_text({"observed_id": 3})) == {"observed_id": 3}
