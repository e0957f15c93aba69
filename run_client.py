"""
Run Client: end-to-end flow from server definitions → registry → tool calls.

This script:
1. Loads server definitions (JSON file, or the built-in echo server)
2. Restores them into a ConnectionRegistry (spawn + handshake each)
3. Lists servers, tools or resources, or calls a tool
4. Optionally runs the call as a background job and polls it
5. Shuts every server down

Usage:
    # Show which servers came up
    python run_client.py

    # Discover tools on every server, or on one
    python run_client.py --tools
    python run_client.py --tools echo

    # Call a tool
    python run_client.py --call echo echo --args '{"message": "hi"}'

    # Same call, as a background job
    python run_client.py --call echo echo --args '{"message": "hi"}' --job

    # Use a server file
    python run_client.py --config my_servers.json --tools
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path

from mcp_client import (
    ClientSettings,
    ConnectionConfig,
    ConnectionRegistry,
    McpClientError,
    ToolJobRunner,
)
from mcp_client.bridge import result_text
from mcp_client.store import InMemoryServerStore, JsonFileServerStore, ServerRecord, ServerStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


# ============================================================
# DEFAULT SERVER DEFINITIONS
# ============================================================
# Used when no --config file exists.

DEFAULT_SERVERS = [
    ConnectionConfig(
        id="echo",
        command=sys.executable,
        args=("-m", "mcp_client.servers.echo"),
    ),
]


def load_store(path: Path) -> ServerStore:
    """Server records from a JSON file, or the defaults in memory."""
    if path.exists():
        logger.info(f"Loading server definitions from {path}")
        return JsonFileServerStore(path)
    logger.info(f"{path} not found, using built-in servers")
    return InMemoryServerStore([ServerRecord(config=c) for c in DEFAULT_SERVERS])


def print_servers(registry: ConnectionRegistry, restored: dict[str, bool]) -> None:
    print(f"\nServers ({len(restored)}):")
    connected = {info.id: info for info in registry.list()}
    for sid, ok in restored.items():
        info = connected.get(sid)
        status = "connected" if info and info.connected else "FAILED"
        command = " ".join(info.config.argv()) if info else ""
        print(f"  {sid:<20} {status:<10} {command}")
    print()


def print_tools(registry: ConnectionRegistry, server_id: str | None) -> None:
    if server_id:
        catalog = {server_id: registry.list_tools(server_id)}
    else:
        catalog = registry.list_all_tools()
    for sid, tools in catalog.items():
        print(f"  [{sid}]")
        for tool in tools:
            print(f"    {tool.name:<25} {tool.description or ''}")
        if not tools:
            print("    (none)")
    print()


def print_resources(registry: ConnectionRegistry, server_id: str | None) -> None:
    if server_id:
        catalog = {server_id: registry.list_resources(server_id)}
    else:
        catalog = registry.list_all_resources()
    for sid, resources in catalog.items():
        print(f"  [{sid}]")
        for resource in resources:
            print(f"    {resource.uri:<30} {resource.name or ''} ({resource.mime_type or '?'})")
        if not resources:
            print("    (none)")
    print()


def run_job(
    registry: ConnectionRegistry,
    server_id: str,
    tool_name: str,
    arguments: dict,
    poll_interval: float = 0.1,
) -> None:
    """Submit a call as a background job and poll the job store until it ends."""
    runner = ToolJobRunner(registry)
    try:
        job = runner.create(server_id, tool_name, arguments)
        runner.submit(job)
        print(f"Submitted job {job.id}")

        while True:
            current = runner.job_store.get(job.id)
            if current and current.status.is_terminal:
                break
            time.sleep(poll_interval)

        print(f"Job {current.id}: {current.status.value}")
        print(json.dumps(current.to_dict(), indent=2))
    finally:
        runner.shutdown()


def main():
    parser = argparse.ArgumentParser(
        description="Connect to MCP servers over stdio and call their tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_client.py --tools
  python run_client.py --resources echo
  python run_client.py --call echo echo --args '{"message": "hello"}' --job
        """,
    )
    parser.add_argument("--config", "-c", type=Path, default=Path("mcp_servers.json"), help="Server definitions file (JSON)")
    parser.add_argument("--tools", nargs="?", const="", default=None, metavar="SERVER", help="List tools (all servers, or one)")
    parser.add_argument("--resources", nargs="?", const="", default=None, metavar="SERVER", help="List resources (all servers, or one)")
    parser.add_argument("--call", nargs=2, metavar=("SERVER", "TOOL"), help="Call a tool")
    parser.add_argument("--args", type=str, default="{}", help="Tool arguments as a JSON object")
    parser.add_argument("--job", action="store_true", help="Run --call as a background job and poll it")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output (including wire traffic)")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        arguments = json.loads(args.args)
    except json.JSONDecodeError as e:
        parser.error(f"--args is not valid JSON: {e}")
    if not isinstance(arguments, dict):
        parser.error("--args must be a JSON object")

    try:
        settings = ClientSettings.from_env()
        store = load_store(args.config)
    except McpClientError as e:
        print(f"Error: {e}")
        sys.exit(2)

    registry = ConnectionRegistry(settings, server_store=store)

    # Graceful shutdown on Ctrl+C
    def shutdown(sig, frame):
        print("\nShutting down MCP servers...")
        registry.shutdown()
        sys.exit(130)
    signal.signal(signal.SIGINT, shutdown)

    try:
        print("Starting MCP servers...")
        restored = registry.restore_from_persisted()
        print_servers(registry, restored)

        if args.tools is not None:
            print_tools(registry, args.tools or None)
        if args.resources is not None:
            print_resources(registry, args.resources or None)

        if args.call:
            server_id, tool_name = args.call
            if args.job:
                run_job(registry, server_id, tool_name, arguments)
            else:
                result = registry.call_tool(server_id, tool_name, arguments)
                print(result_text(result))
    except McpClientError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        registry.shutdown()
        print("\nMCP servers stopped.")


if __name__ == "__main__":
    main()
