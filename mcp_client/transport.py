"""
Transport layer for MCP communication.

Implements:
  - JSON-RPC 2.0 message types (request/notification, response, error)
  - Transport: the interface ServerConnection talks through
  - StdioTransport: one child process and its pipes, one message per line

StdioTransport only moves lines. It knows nothing about the handshake
or about which request a line answers; that is ServerConnection's job.
"""

from __future__ import annotations

import json
import logging
import queue
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mcp_client.errors import ProtocolError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# Pushed onto the line queue when stdout reaches end-of-stream or the
# read channel is closed locally.
_EOF = object()


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request. A request without an id is a notification."""
    method: str
    params: dict[str, Any] | None = None
    id: int | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
        if self.id is not None:
            message["id"] = self.id
        message["method"] = self.method
        if self.params is not None:
            message["params"] = self.params
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class RpcError:
    """The ``error`` member of a JSON-RPC response."""
    code: int
    message: str
    data: Any = None

    @classmethod
    def from_dict(cls, raw: Any) -> "RpcError":
        if not isinstance(raw, dict):
            return cls(code=-32603, message=str(raw))
        return cls(
            code=raw.get("code", -32603),
            message=str(raw.get("message", "")),
            data=raw.get("data"),
        )


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: RpcError | None = None

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed response line: {e}: {data[:200]!r}") from e
        if not isinstance(parsed, dict):
            raise ProtocolError(f"Response is not a JSON object: {data[:200]!r}")

        error = parsed.get("error")
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=RpcError.from_dict(error) if error is not None else None,
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Transport(ABC):
    """Line-oriented channel to one MCP server."""

    @abstractmethod
    def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    def stop(self, grace: float = 5.0) -> None:
        """Release every resource the transport holds. Never raises."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...

    @abstractmethod
    def write_line(self, line: str) -> None:
        """Write one line and flush. Raises OSError on failure."""
        ...

    @abstractmethod
    def read_line(self, timeout: float | None = None) -> str:
        """
        Block for the next line.

        Raises:
            EOFError: the stream ended or the transport was stopped.
            TimeoutError: no line arrived within ``timeout`` seconds.
        """
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The server runs as a child
    process with stderr merged into stdout. We write requests to its
    stdin; a daemon thread reads stdout line by line into a queue so
    that reads can be bounded by a timeout.
    """

    def __init__(
        self,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ):
        """
        Args:
            command: Command to launch the server process.
                     e.g., ["python", "-m", "mcp_client.servers.echo"]
            cwd: Optional working directory for the subprocess.
            env: Optional environment variables for the subprocess.
        """
        self.command = command
        self.cwd = cwd
        self.env = env
        self._process: subprocess.Popen | None = None
        self._lines: queue.Queue = queue.Queue()
        self._reader: threading.Thread | None = None
        self._stopped = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def start(self) -> None:
        """Launch the server subprocess and its stdout reader."""
        if self._process is not None:
            raise RuntimeError("Transport already started")

        logger.info(f"Starting stdio transport: {' '.join(self.command)}")
        self._process = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=self.cwd,
            env=self.env,
            text=True,
            encoding="utf-8",
            # stderr shares this pipe; undecodable bytes become U+FFFD
            errors="replace",
            bufsize=1,  # Line-buffered
        )
        self._reader = threading.Thread(
            target=self._read_stdout,
            args=(self._process.stdout,),
            name=f"mcp-stdout-{self._process.pid}",
            daemon=True,
        )
        self._reader.start()

    def _read_stdout(self, stream) -> None:
        try:
            for line in stream:
                self._lines.put(line)
        except (OSError, ValueError) as e:
            logger.debug(f"stdout reader stopped: {e}")
        finally:
            self._lines.put(_EOF)
            try:
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing stdout: {e}")

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.poll() is None

    def write_line(self, line: str) -> None:
        if self._process is None or self._process.stdin is None or self._stopped:
            raise BrokenPipeError("Transport is not running")
        try:
            self._process.stdin.write(line + "\n")
            self._process.stdin.flush()
        except ValueError as e:
            # Writing to a closed file object
            raise BrokenPipeError(str(e)) from e

    def read_line(self, timeout: float | None = None) -> str:
        if self._process is None:
            raise EOFError("Transport is not running")
        try:
            item = self._lines.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"No response within {timeout}s") from None
        if item is _EOF:
            # Leave the marker for any later reader.
            self._lines.put(_EOF)
            raise EOFError("Server closed connection")
        return item.rstrip("\r\n")

    def stop(self, grace: float = 5.0) -> None:
        """
        Close stdin, close the read side, then terminate the process,
        escalating to kill if it outlives ``grace`` seconds.
        """
        process = self._process
        if process is None or self._stopped:
            return
        self._stopped = True

        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError as e:
                logger.warning(f"Error closing stdin: {e}")

        # Wake anyone blocked in read_line; the reader thread closes stdout
        # itself once the process is gone.
        self._lines.put(_EOF)

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"Process {process.pid} ignored SIGTERM for {grace}s, killing"
                )
                process.kill()
                try:
                    process.wait(timeout=grace)
                except subprocess.TimeoutExpired:
                    logger.error(f"Process {process.pid} did not die after SIGKILL")

        if self._reader is not None:
            self._reader.join(timeout=1.0)
        logger.info("Stdio transport stopped")
