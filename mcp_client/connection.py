"""
One live session with one MCP server process.

    ConnectionConfig ──► ServerConnection ──► Transport (process + pipes)

Lifecycle:

    DISCONNECTED ──connect() ok──────► CONNECTED ──disconnect()──► DISCONNECTED
         │
         └──────connect() fails─────► FAILED   (terminal; build a new instance)

A CONNECTED session whose process exits on its own is noticed lazily:
is_connected() re-checks process liveness on every call and the next
round trip fails with ProtocolError.

IMPORTANT: the protocol is strictly one request in flight per
connection. A response is whatever line comes back next; its id is NOT
checked against the request id. send_request() therefore holds a lock
across the whole write+read round trip. Do not turn this into id-based
multiplexing: no server or caller in this system expects overlapping
requests on one connection.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from mcp_client.errors import (
    ConfigError,
    McpClientError,
    McpConnectionError,
    ProtocolError,
    ResourceError,
    ToolError,
)
from mcp_client.settings import ClientSettings
from mcp_client.transport import JsonRpcRequest, JsonRpcResponse, StdioTransport, Transport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
INITIALIZE = "initialize"
INITIALIZED = "notifications/initialized"


@dataclass(frozen=True)
class ConnectionConfig:
    """How to launch one MCP server."""
    id: str
    command: str
    args: tuple[str, ...] = ()
    working_directory: str | None = None

    def __post_init__(self):
        if not self.id:
            raise ConfigError("Server id must not be empty")
        if not self.command:
            raise ConfigError("Server command must not be empty", self.id)
        # Accept any sequence, store an immutable one
        object.__setattr__(self, "args", tuple(self.args or ()))

    def argv(self) -> list[str]:
        return [self.command, *self.args]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectionConfig":
        args = data.get("args") or []
        if not isinstance(args, (list, tuple)):
            raise ConfigError(f"args must be a list, got {type(args).__name__}", data.get("id"))
        return cls(
            id=data.get("id", ""),
            command=data.get("command", ""),
            args=tuple(str(a) for a in args),
            working_directory=data.get("workingDirectory"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "args": list(self.args),
            "workingDirectory": self.working_directory,
        }


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class McpTool:
    """One entry of a ``tools/list`` result."""
    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpTool":
        return cls(
            name=data.get("name", ""),
            description=data.get("description"),
            input_schema=data.get("inputSchema") or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass
class McpResource:
    """One entry of a ``resources/list`` result."""
    uri: str
    name: str | None = None
    description: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpResource":
        return cls(
            uri=data.get("uri", ""),
            name=data.get("name"),
            description=data.get("description"),
            mime_type=data.get("mimeType"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


TransportFactory = Callable[[ConnectionConfig], Transport]


def stdio_transport(config: ConnectionConfig) -> Transport:
    return StdioTransport(config.argv(), cwd=config.working_directory)


class ServerConnection:
    """
    Owns one MCP server process: handshake, round trips, teardown.

    Usage:
        conn = ServerConnection(ConnectionConfig("echo", "python", ("-m", "mcp_client.servers.echo")))
        conn.connect("my-host", "1.0.0")
        tools = conn.list_tools()
        result = conn.call_tool("echo", {"message": "hi"})
        conn.disconnect()
    """

    def __init__(
        self,
        config: ConnectionConfig,
        settings: ClientSettings | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        self._config = config
        self._settings = settings or ClientSettings()
        self._transport_factory = transport_factory or stdio_transport
        self._transport: Transport | None = None
        self._ids = itertools.count(1)
        self._connected = False
        self._state = ConnectionState.DISCONNECTED
        # Serializes full write+read round trips
        self._io_lock = threading.Lock()
        # Guards transport handoff between connect/disconnect
        self._lifecycle_lock = threading.Lock()

    @property
    def server_id(self) -> str:
        return self._config.id

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        if self._state == ConnectionState.CONNECTED and not self.is_connected():
            return ConnectionState.DISCONNECTED
        return self._state

    def is_connected(self) -> bool:
        """True iff the handshake completed and the process is alive right now."""
        transport = self._transport
        return self._connected and transport is not None and transport.is_alive()

    # ── Handshake ─────────────────────────────────────────

    def connect(self, client_name: str | None = None, client_version: str | None = None) -> None:
        """
        Launch the server and perform the initialize/initialized handshake.

        Raises:
            McpConnectionError: spawn failed, handshake rejected, or I/O
                failed. The process and pipes are released before raising
                and the connection is left FAILED.
        """
        sid = self.server_id
        with self._lifecycle_lock:
            if self._state != ConnectionState.DISCONNECTED:
                raise McpConnectionError(
                    f"Cannot connect from state {self._state.value}", sid
                )
            self._state = ConnectionState.CONNECTING
            self._transport = self._transport_factory(self._config)

        logger.info(f"Connecting to MCP server: {sid}")
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "clientInfo": {
                "name": client_name or self._settings.client_name,
                "version": client_version or self._settings.client_version,
            },
            "capabilities": {"roots": {}, "sampling": {}},
        }

        succeeded = False
        try:
            try:
                self._transport.start()
            except (OSError, ValueError, TypeError) as e:
                # Popen reports bad argv entries (e.g. NUL bytes) as ValueError/TypeError
                raise McpConnectionError(f"Failed to start MCP server: {e}", sid) from e
            response = self.send_request(INITIALIZE, params)
            if response.is_error:
                raise McpConnectionError(
                    f"Failed to initialize: {response.error.message}", sid
                )
            self.send_notification(INITIALIZED)
            succeeded = True
        except McpConnectionError:
            raise
        except (McpClientError, OSError) as e:
            raise McpConnectionError(f"Failed to connect to MCP server: {e}", sid) from e
        finally:
            if not succeeded:
                self._release(ConnectionState.FAILED)

        with self._lifecycle_lock:
            self._connected = True
            self._state = ConnectionState.CONNECTED
        logger.info(f"Successfully connected to MCP server: {sid}")

    # ── Round trips ───────────────────────────────────────

    def send_request(self, method: str, params: dict[str, Any] | None = None) -> JsonRpcResponse:
        """
        Write one request and read exactly one line back as its response.

        Raises:
            McpConnectionError: not connected (no I/O is attempted).
            ProtocolError: write failed, stream ended, malformed JSON, or
                the response did not arrive within the request timeout
                (the connection is force-disconnected in that case).
        """
        sid = self.server_id
        if not self._connected and method != INITIALIZE:
            raise McpConnectionError("Server not connected", sid)

        timeout = self._settings.request_timeout
        with self._io_lock:
            transport = self._transport
            if transport is None:
                raise McpConnectionError("Server not connected", sid)

            request = JsonRpcRequest(method=method, params=params, id=next(self._ids))
            payload = request.to_json()
            logger.debug(f"Sending request to {sid}: {payload}")

            try:
                transport.write_line(payload)
            except OSError as e:
                raise ProtocolError(f"Failed to send {method}: {e}", sid) from e

            try:
                line = transport.read_line(timeout=timeout)
            except TimeoutError:
                line = None
            except EOFError:
                raise ProtocolError("Server closed connection", sid) from None
            except OSError as e:
                raise ProtocolError(f"Failed to read response to {method}: {e}", sid) from e

        if line is None:
            logger.warning(f"No response from {sid} to {method} within {timeout}s, disconnecting")
            self.disconnect()
            raise ProtocolError(f"No response to {method} within {timeout}s", sid)

        logger.debug(f"Received response from {sid}: {line}")
        try:
            return JsonRpcResponse.from_json(line)
        except ProtocolError as e:
            raise ProtocolError(e.message, sid) from e

    def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Write a notification (no id); nothing is read back."""
        sid = self.server_id
        notification = JsonRpcRequest(method=method, params=params)
        payload = notification.to_json()
        with self._io_lock:
            transport = self._transport
            if transport is None:
                raise McpConnectionError("Server not connected", sid)
            logger.debug(f"Sending notification to {sid}: {payload}")
            try:
                transport.write_line(payload)
            except OSError as e:
                raise ProtocolError(f"Failed to send {method}: {e}", sid) from e

    # ── Tools & resources ─────────────────────────────────

    def list_tools(self) -> list[McpTool]:
        response = self.send_request("tools/list")
        if response.is_error:
            raise ToolError(
                f"Failed to list tools: {response.error.message}",
                self.server_id,
                code=response.error.code,
                data=response.error.data,
            )
        return [McpTool.from_dict(t) for t in _result_list(response.result, "tools")]

    def list_resources(self) -> list[McpResource]:
        response = self.send_request("resources/list")
        if response.is_error:
            raise ResourceError(
                f"Failed to list resources: {response.error.message}",
                self.server_id,
                code=response.error.code,
                data=response.error.data,
            )
        return [McpResource.from_dict(r) for r in _result_list(response.result, "resources")]

    def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Invoke a tool and return the server's raw ``result`` payload."""
        response = self.send_request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
        if response.is_error:
            raise ToolError(
                f"Failed to call tool {name}: {response.error.message}",
                self.server_id,
                code=response.error.code,
                data=response.error.data,
            )
        return response.result

    # ── Teardown ──────────────────────────────────────────

    def disconnect(self) -> None:
        """Stop the server process. Safe to call any number of times."""
        if self._transport is None:
            self._connected = False
            return
        logger.info(f"Disconnecting from MCP server: {self.server_id}")
        self._release(ConnectionState.DISCONNECTED)

    def _release(self, final_state: ConnectionState) -> None:
        with self._lifecycle_lock:
            # Observers must see "not connected" before any pipe closes
            self._connected = False
            transport, self._transport = self._transport, None
            if self._state != ConnectionState.FAILED:
                self._state = final_state
        if transport is None:
            return
        try:
            transport.stop(grace=self._settings.shutdown_grace)
        except Exception as e:
            logger.warning(f"Error stopping transport for {self.server_id}: {e}")


def _result_list(result: Any, key: str) -> list[dict]:
    if not isinstance(result, dict):
        return []
    items = result.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]
