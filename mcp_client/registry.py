"""
Connection Registry: launches, tracks and routes to MCP server connections.

The registry is the one place that knows which servers are live. Every
foreground call and every background job goes through it.

Usage:
    registry = ConnectionRegistry(ClientSettings.from_env())

    # Register (spawns the process and runs the handshake)
    registry.register(ConnectionConfig("echo", "python", ("-m", "mcp_client.servers.echo")))

    # Discover and call
    tools = registry.list_tools("echo")
    result = registry.call_tool("echo", "echo", {"message": "hi"})

    # Stop everything
    registry.shutdown()
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from mcp_client.connection import ConnectionConfig, McpResource, McpTool, ServerConnection
from mcp_client.errors import ConfigError, McpConnectionError, NotFoundError
from mcp_client.settings import ClientSettings
from mcp_client.store import (
    CatalogSink,
    InMemoryCatalog,
    InMemoryServerStore,
    ServerRecord,
    ServerStatus,
    ServerStore,
)

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[ConnectionConfig, ClientSettings], ServerConnection]


@dataclass
class ServerInfo:
    """Snapshot of one registry entry."""
    id: str
    connected: bool
    config: ConnectionConfig

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "connected": self.connected, "config": self.config.to_dict()}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionRegistry:
    """
    Thread-safe map of server id → ServerConnection.

    Responsibilities:
    - Register: spawn + handshake, insert only on success
    - Route tool/resource calls to the right live connection
    - Keep the server store and tool/resource catalog current
    - Restore persisted servers and refresh catalogs in bulk,
      tolerating per-server failures
    - Shut every connection down
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        server_store: ServerStore | None = None,
        catalog: CatalogSink | None = None,
        connection_factory: ConnectionFactory | None = None,
    ):
        self.settings = settings or ClientSettings()
        self.server_store = server_store if server_store is not None else InMemoryServerStore()
        self.catalog = catalog if catalog is not None else InMemoryCatalog()
        self._connection_factory = connection_factory or ServerConnection
        self._connections: dict[str, ServerConnection] = {}
        # Ids whose handshake is in progress; they count as taken
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "ConnectionRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ── Lifecycle ─────────────────────────────────────────

    def register(self, config: ConnectionConfig) -> ServerConnection:
        """
        Connect to a new server and start tracking it.

        Raises:
            ConfigError: a server with this id is already registered.
            McpConnectionError: the process could not be started or the
                handshake failed, or the registry has been shut down.
                Nothing is registered.
        """
        with self._lock:
            if self._closed:
                raise McpConnectionError("Registry is shut down", config.id)
            if config.id in self._connections or config.id in self._pending:
                raise ConfigError(f"Server with id {config.id} already registered", config.id)
            self._pending.add(config.id)

        # The handshake runs outside the lock so other servers stay usable
        try:
            logger.info(f"Registering MCP server: {config.id} ({' '.join(config.argv())})")
            connection = self._connection_factory(config, self.settings)
            connection.connect(self.settings.client_name, self.settings.client_version)
            with self._lock:
                closed = self._closed
                if not closed:
                    self._connections[config.id] = connection
        finally:
            with self._lock:
                self._pending.discard(config.id)

        if closed:
            # shutdown() ran during the handshake and will not see this connection
            connection.disconnect()
            raise McpConnectionError("Registry is shut down", config.id)

        self.server_store.save(
            ServerRecord(config=config, status=ServerStatus.CONNECTED, last_connected=_now())
        )
        logger.info(f"Successfully registered MCP server: {config.id}")
        return connection

    def unregister(self, server_id: str) -> None:
        """Disconnect and forget a server. Unknown ids are ignored."""
        with self._lock:
            connection = self._connections.pop(server_id, None)
        if connection is None:
            return

        connection.disconnect()
        self.server_store.set_status(server_id, ServerStatus.DISCONNECTED)
        logger.info(f"Unregistered MCP server: {server_id}")

    def restore_from_persisted(
        self, entries: Iterable[ConnectionConfig] | None = None
    ) -> dict[str, bool]:
        """
        Register every persisted server. A failure marks that server FAILED
        and moves on. Returns {server_id: connected}.
        """
        if entries is None:
            entries = [record.config for record in self.server_store.all()]
        entries = list(entries)
        logger.info(f"Restoring {len(entries)} previously registered MCP servers...")

        results: dict[str, bool] = {}
        for config in entries:
            if self.server_store.get(config.id) is None:
                self.server_store.save(ServerRecord(config=config))
            try:
                self.register(config)
                results[config.id] = True
                logger.info(f"Reconnected server: {config.id}")
            except Exception as e:
                logger.warning(f"Failed to restore server {config.id}: {e}")
                self.server_store.set_status(config.id, ServerStatus.FAILED)
                results[config.id] = False
        return results

    def shutdown(self) -> None:
        """Disconnect every server (in parallel) and refuse further registers."""
        with self._lock:
            self._closed = True
            connections = dict(self._connections)
            self._connections.clear()
        if not connections:
            return

        logger.info(f"Shutting down MCP client, disconnecting {len(connections)} servers")
        pool = ThreadPoolExecutor(
            max_workers=len(connections), thread_name_prefix="mcp-shutdown"
        )
        futures = {pool.submit(conn.disconnect): sid for sid, conn in connections.items()}
        # terminate + kill, each bounded by the grace period, plus a margin
        done, pending = wait(futures, timeout=self.settings.shutdown_grace * 2 + 1.0)
        for future in done:
            error = future.exception()
            if error is not None:
                logger.error(f"Error disconnecting server {futures[future]}: {error}")
        for future in pending:
            logger.error(f"Timed out disconnecting server {futures[future]}")
        pool.shutdown(wait=False)

        for sid in connections:
            self.server_store.set_status(sid, ServerStatus.DISCONNECTED)

    # ── Queries ───────────────────────────────────────────

    def list(self) -> list[ServerInfo]:
        """Snapshot of all entries; `connected` is checked live."""
        with self._lock:
            entries = list(self._connections.items())
        return [
            ServerInfo(id=sid, connected=conn.is_connected(), config=conn.config)
            for sid, conn in entries
        ]

    def is_connected(self, server_id: str) -> bool:
        connection = self._connections.get(server_id)
        return connection is not None and connection.is_connected()

    def get(self, server_id: str) -> ServerConnection:
        """
        Return the live connection for a server.

        Raises:
            NotFoundError: unknown id, or the server is not connected.
        """
        connection = self._connections.get(server_id)
        if connection is None:
            raise NotFoundError(f"Server not found: {server_id}", server_id)
        if not connection.is_connected():
            raise NotFoundError(f"Server not connected: {server_id}", server_id)
        return connection

    # ── Routed operations ─────────────────────────────────

    def list_tools(self, server_id: str) -> list[McpTool]:
        """List a server's tools and replace its catalog entry."""
        tools = self.get(server_id).list_tools()
        self.catalog.replace_tools(server_id, tools)
        return tools

    def list_resources(self, server_id: str) -> list[McpResource]:
        """List a server's resources and replace its catalog entry."""
        resources = self.get(server_id).list_resources()
        self.catalog.replace_resources(server_id, resources)
        return resources

    def call_tool(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> Any:
        return self.get(server_id).call_tool(tool_name, arguments)

    def list_all_tools(self) -> dict[str, list[McpTool]]:
        """{server_id: [tools]}; servers that fail contribute an empty list."""
        return self._gather("tools", lambda conn: conn.list_tools())

    def list_all_resources(self) -> dict[str, list[McpResource]]:
        """{server_id: [resources]}; servers that fail contribute an empty list."""
        return self._gather("resources", lambda conn: conn.list_resources())

    def _gather(self, what: str, fetch: Callable[[ServerConnection], list]) -> dict[str, list]:
        with self._lock:
            entries = list(self._connections.items())

        results: dict[str, list] = {}
        for sid, connection in entries:
            try:
                results[sid] = fetch(connection)
            except Exception as e:
                logger.error(f"Error listing {what} from server {sid}: {e}")
                results[sid] = []
        return results

    def refresh_all(self) -> dict[str, str | None]:
        """
        Re-fetch tools and resources for every connected server.

        Returns {server_id: None on success, else the error message}.
        """
        with self._lock:
            server_ids = [sid for sid, conn in self._connections.items() if conn.is_connected()]

        outcome: dict[str, str | None] = {}
        for sid in server_ids:
            try:
                self.list_tools(sid)
                self.list_resources(sid)
                outcome[sid] = None
            except Exception as e:
                logger.warning(f"Refresh failed for {sid}: {e}")
                outcome[sid] = str(e)
        return outcome
