"""
Collaborators the registry and job runner write through.

  - ServerStore: registered server configs and their last known status
  - CatalogSink: last discovered tools/resources per server (replace-all)
  - JobStore:    ToolJob records, the only channel for job completion

In-memory implementations are provided for all three, plus a JSON-file
ServerStore so a CLI session can restore its servers on the next run.
All implementations are thread-safe: background jobs and foreground
callers share them.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mcp_client.connection import ConnectionConfig, McpResource, McpTool
from mcp_client.errors import ConfigError

if TYPE_CHECKING:
    from mcp_client.jobs import ToolJob

logger = logging.getLogger(__name__)


class ServerStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass
class ServerRecord:
    config: ConnectionConfig
    status: ServerStatus = ServerStatus.DISCONNECTED
    last_connected: datetime | None = None

    @property
    def id(self) -> str:
        return self.config.id

    def to_dict(self) -> dict[str, Any]:
        data = self.config.to_dict()
        data["status"] = self.status.value
        data["lastConnected"] = self.last_connected.isoformat() if self.last_connected else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerRecord":
        last = data.get("lastConnected")
        return cls(
            config=ConnectionConfig.from_dict(data),
            status=ServerStatus(data.get("status") or ServerStatus.DISCONNECTED.value),
            last_connected=datetime.fromisoformat(last) if last else None,
        )


# ============================================================
# INTERFACES
# ============================================================

class ServerStore(ABC):
    @abstractmethod
    def all(self) -> list[ServerRecord]:
        ...

    @abstractmethod
    def get(self, server_id: str) -> ServerRecord | None:
        ...

    @abstractmethod
    def save(self, record: ServerRecord) -> None:
        ...

    @abstractmethod
    def delete(self, server_id: str) -> None:
        ...

    def set_status(
        self,
        server_id: str,
        status: ServerStatus,
        last_connected: datetime | None = None,
    ) -> None:
        """Update a record's status; unknown ids are ignored."""
        record = self.get(server_id)
        if record is None:
            return
        record.status = status
        if last_connected is not None:
            record.last_connected = last_connected
        self.save(record)


class CatalogSink(ABC):
    @abstractmethod
    def replace_tools(self, server_id: str, tools: list[McpTool]) -> None:
        ...

    @abstractmethod
    def replace_resources(self, server_id: str, resources: list[McpResource]) -> None:
        ...

    @abstractmethod
    def tools(self, server_id: str) -> list[McpTool]:
        ...

    @abstractmethod
    def resources(self, server_id: str) -> list[McpResource]:
        ...


class JobStore(ABC):
    @abstractmethod
    def create(self, job: "ToolJob") -> "ToolJob":
        """Persist a new job, assigning its id."""
        ...

    @abstractmethod
    def get(self, job_id: int) -> "ToolJob | None":
        ...

    @abstractmethod
    def by_server(self, server_id: str) -> list["ToolJob"]:
        ...

    @abstractmethod
    def update(self, job: "ToolJob") -> None:
        ...


# ============================================================
# IMPLEMENTATIONS
# ============================================================

class InMemoryServerStore(ServerStore):
    def __init__(self, records: list[ServerRecord] | None = None):
        self._lock = threading.Lock()
        self._records: dict[str, ServerRecord] = {}
        for record in records or []:
            self._records[record.id] = copy.copy(record)

    def all(self) -> list[ServerRecord]:
        with self._lock:
            return [copy.copy(r) for r in self._records.values()]

    def get(self, server_id: str) -> ServerRecord | None:
        with self._lock:
            record = self._records.get(server_id)
            return copy.copy(record) if record else None

    def save(self, record: ServerRecord) -> None:
        with self._lock:
            self._records[record.id] = copy.copy(record)
            self._changed()

    def delete(self, server_id: str) -> None:
        with self._lock:
            if self._records.pop(server_id, None) is not None:
                self._changed()

    def _changed(self) -> None:
        """Hook called with the lock held after every mutation."""


class JsonFileServerStore(InMemoryServerStore):
    """
    Server records kept in a JSON file:

        {"servers": [{"id": ..., "command": ..., "args": [...],
                      "workingDirectory": ..., "status": ..., "lastConnected": ...}]}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> list[ServerRecord]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read server file {self.path}: {e}") from e
        entries = data.get("servers", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise ConfigError(f"'servers' in {self.path} must be a list")
        logger.debug(f"Loaded {len(entries)} server definitions from {self.path}")
        try:
            return [ServerRecord.from_dict(entry) for entry in entries]
        except (ValueError, AttributeError) as e:
            # Bad status/timestamp values, or entries that are not objects
            raise ConfigError(f"Invalid server entry in {self.path}: {e}") from e

    def _changed(self) -> None:
        payload = {"servers": [r.to_dict() for r in self._records.values()]}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


class InMemoryCatalog(CatalogSink):
    def __init__(self):
        self._lock = threading.Lock()
        self._tools: dict[str, list[McpTool]] = {}
        self._resources: dict[str, list[McpResource]] = {}

    def replace_tools(self, server_id: str, tools: list[McpTool]) -> None:
        with self._lock:
            self._tools[server_id] = list(tools)

    def replace_resources(self, server_id: str, resources: list[McpResource]) -> None:
        with self._lock:
            self._resources[server_id] = list(resources)

    def tools(self, server_id: str) -> list[McpTool]:
        with self._lock:
            return list(self._tools.get(server_id, []))

    def resources(self, server_id: str) -> list[McpResource]:
        with self._lock:
            return list(self._resources.get(server_id, []))


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._jobs: dict[int, "ToolJob"] = {}

    def create(self, job: "ToolJob") -> "ToolJob":
        with self._lock:
            job.id = next(self._ids)
            self._jobs[job.id] = copy.copy(job)
        return job

    def get(self, job_id: int) -> "ToolJob | None":
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.copy(job) if job else None

    def by_server(self, server_id: str) -> list["ToolJob"]:
        with self._lock:
            return [copy.copy(j) for j in self._jobs.values() if j.server_id == server_id]

    def update(self, job: "ToolJob") -> None:
        if job.id is None:
            raise ValueError("Cannot update a job that was never created")
        with self._lock:
            self._jobs[job.id] = copy.copy(job)
