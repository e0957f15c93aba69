"""
Background tool invocations.

A ToolJob is created PENDING, handed to ToolJobRunner.submit(), and from
then on mutated only by the runner:

    PENDING ──► RUNNING ──► SUCCESS
                       └──► FAILED

submit() returns immediately. The job store is the only way to observe
completion: poll JobStore.get(job_id) until the status is terminal.
"""

from __future__ import annotations

import functools
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from mcp_client.registry import ConnectionRegistry
from mcp_client.store import InMemoryJobStore, JobStore

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ToolJob:
    server_id: str
    tool_name: str
    arguments_json: str = "{}"
    id: int | None = None
    status: JobStatus = JobStatus.PENDING
    result_json: str | None = None
    created_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None

    def mark_completed(self, status: JobStatus, result_json: str) -> None:
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        if self.completed_at is not None:
            raise ValueError(f"Job {self.id} already completed ({self.status.value})")
        self.status = status
        self.result_json = result_json
        self.completed_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "serverId": self.server_id,
            "toolName": self.tool_name,
            "argumentsJson": self.arguments_json,
            "status": self.status.value,
            "resultJson": self.result_json,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class ToolJobRunner:
    """
    Runs tool calls on a thread pool and records outcomes in a JobStore.

    Usage:
        runner = ToolJobRunner(registry, job_store)
        job = runner.create("echo", "echo", {"message": "hi"})
        runner.submit(job)
        ...
        job_store.get(job.id).status  # poll
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        job_store: JobStore | None = None,
        max_workers: int | None = None,
    ):
        self.registry = registry
        self.job_store = job_store if job_store is not None else InMemoryJobStore()
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or registry.settings.job_workers,
            thread_name_prefix="tool-job",
        )
        self._lock = threading.Lock()

    def create(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> ToolJob:
        """Persist a new PENDING job."""
        job = ToolJob(
            server_id=server_id,
            tool_name=tool_name,
            arguments_json=json.dumps(arguments or {}),
        )
        return self.job_store.create(job)

    def submit(self, job: ToolJob) -> None:
        """Schedule a job. Completion is observable only through the job store."""
        with self._lock:
            if job.status != JobStatus.PENDING:
                raise ValueError(f"Job {job.id} is {job.status.value}, expected pending")
            # Claimed before it reaches the pool, so a second submit is refused
            job.status = JobStatus.RUNNING
        logger.info(f"Submitting job {job.id}: {job.server_id}/{job.tool_name}")
        try:
            future = self._pool.submit(self._execute, job)
        except RuntimeError:
            job.status = JobStatus.PENDING
            raise
        future.add_done_callback(functools.partial(self._report_unrecorded, job.id))

    def _execute(self, job: ToolJob) -> None:
        try:
            self.job_store.update(job)
            arguments = json.loads(job.arguments_json) if job.arguments_json else {}
            result = self.registry.call_tool(job.server_id, job.tool_name, arguments)
            job.mark_completed(JobStatus.SUCCESS, json.dumps(result))
            logger.info(f"Job {job.id} succeeded")
        except Exception as e:
            job.mark_completed(JobStatus.FAILED, json.dumps({"error": str(e)}))
            logger.warning(f"Job {job.id} failed ({job.server_id}/{job.tool_name}): {e}")

        self.job_store.update(job)

    @staticmethod
    def _report_unrecorded(job_id: int | None, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Job {job_id} outcome could not be recorded: {error}")

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
