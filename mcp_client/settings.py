"""
Client-wide settings.

Defaults suit local development; override through the environment:

    MCP_CLIENT_NAME       name sent in the initialize handshake
    MCP_CLIENT_VERSION    version sent in the initialize handshake
    MCP_REQUEST_TIMEOUT   seconds per round trip ("0" or "none" disables)
    MCP_SHUTDOWN_GRACE    seconds to wait for a child after SIGTERM
    MCP_JOB_WORKERS       background tool-job threads
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from mcp_client.errors import ConfigError

DEFAULT_CLIENT_NAME = "mcp-stdio-client"
DEFAULT_CLIENT_VERSION = "1.0.0"


@dataclass(frozen=True)
class ClientSettings:
    client_name: str = DEFAULT_CLIENT_NAME
    client_version: str = DEFAULT_CLIENT_VERSION
    request_timeout: float | None = 30.0
    shutdown_grace: float = 5.0
    job_workers: int = 4

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ClientSettings":
        env = os.environ if environ is None else environ
        defaults = cls()

        timeout: float | None = defaults.request_timeout
        raw_timeout = env.get("MCP_REQUEST_TIMEOUT")
        if raw_timeout is not None:
            if raw_timeout.strip().lower() in ("", "0", "none"):
                timeout = None
            else:
                timeout = _parse_number("MCP_REQUEST_TIMEOUT", raw_timeout, float)

        grace = defaults.shutdown_grace
        if "MCP_SHUTDOWN_GRACE" in env:
            grace = _parse_number("MCP_SHUTDOWN_GRACE", env["MCP_SHUTDOWN_GRACE"], float)

        workers = defaults.job_workers
        if "MCP_JOB_WORKERS" in env:
            workers = _parse_number("MCP_JOB_WORKERS", env["MCP_JOB_WORKERS"], int)
            if workers < 1:
                raise ConfigError(f"MCP_JOB_WORKERS must be >= 1, got {workers}")

        return cls(
            client_name=env.get("MCP_CLIENT_NAME", defaults.client_name),
            client_version=env.get("MCP_CLIENT_VERSION", defaults.client_version),
            request_timeout=timeout,
            shutdown_grace=grace,
            job_workers=workers,
        )


def _parse_number(name: str, raw: str, kind: type):
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value
