from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

from mcp_client.connection import ConnectionConfig
from mcp_client.registry import ConnectionRegistry
from mcp_client.settings import ClientSettings

FAKE_SERVER = Path(__file__).parent / "fake_server.py"
PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(client_name="test-host", client_version="9.9.9", request_timeout=5.0, shutdown_grace=2.0)


@pytest.fixture
def fake_config() -> Callable[..., ConnectionConfig]:
    def _make(server_id: str = "fake", mode: str = "normal", log: Path | None = None) -> ConnectionConfig:
        args = [str(FAKE_SERVER), mode]
        if log is not None:
            args.append(str(log))
        return ConnectionConfig(id=server_id, command=sys.executable, args=tuple(args))
    return _make


@pytest.fixture
def echo_config() -> ConnectionConfig:
    return ConnectionConfig(
        id="echo",
        command=sys.executable,
        args=("-m", "mcp_client.servers.echo"),
        working_directory=str(PROJECT_ROOT),
    )


@pytest.fixture
def registry(settings):
    reg = ConnectionRegistry(settings)
    yield reg
    reg.shutdown()
