from __future__ import annotations

import json
import threading
import time

import pytest

from mcp_client.jobs import JobStatus, ToolJob, ToolJobRunner
from mcp_client.store import InMemoryJobStore


def wait_for(store, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = store.get(job_id)
        if job.status.is_terminal:
            return job
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish: {store.get(job_id)}")


class RecordingJobStore(InMemoryJobStore):
    def __init__(self):
        super().__init__()
        self.transitions = []

    def update(self, job):
        self.transitions.append(job.status)
        super().update(job)


@pytest.fixture
def runner(registry):
    runner = ToolJobRunner(registry, RecordingJobStore(), max_workers=4)
    yield runner
    runner.shutdown()


def test_create_persists_pending_job(runner):
    job = runner.create("srv", "ping", {"a": 1})
    assert job.id == 1
    stored = runner.job_store.get(job.id)
    assert stored.status == JobStatus.PENDING
    assert json.loads(stored.arguments_json) == {"a": 1}
    assert stored.completed_at is None
    assert runner.job_store.by_server("srv") == [stored]


def test_successful_job(runner, registry, fake_config):
    registry.register(fake_config("srv"))
    job = runner.create("srv", "ping", {"a": 1})

    assert runner.submit(job) is None
    done = wait_for(runner.job_store, job.id)

    assert done.status == JobStatus.SUCCESS
    result = json.loads(done.result_json)
    assert result["name"] == "ping"
    assert result["arguments"] == {"a": 1}
    assert done.completed_at >= done.created_at
    assert runner.job_store.transitions == [JobStatus.RUNNING, JobStatus.SUCCESS]


def test_unknown_server_fails_job(runner):
    job = runner.create("nowhere", "ping")
    runner.submit(job)
    done = wait_for(runner.job_store, job.id)

    assert done.status == JobStatus.FAILED
    assert "Server not found: nowhere" in json.loads(done.result_json)["error"]
    assert done.completed_at is not None


def test_disconnected_server_fails_job(runner, registry, fake_config):
    registry.register(fake_config("down")).disconnect()
    job = runner.create("down", "ping")
    runner.submit(job)
    done = wait_for(runner.job_store, job.id)
    assert done.status == JobStatus.FAILED
    assert "not connected" in done.result_json


def test_tool_error_fails_job(runner, registry, fake_config):
    registry.register(fake_config("err", mode="rpc-errors"))
    job = runner.create("err", "ping")
    runner.submit(job)
    done = wait_for(runner.job_store, job.id)
    assert done.status == JobStatus.FAILED
    assert "tools/call exploded" in json.loads(done.result_json)["error"]


def test_malformed_arguments_fail_job(runner):
    job = runner.job_store.create(ToolJob(server_id="srv", tool_name="ping", arguments_json="{oops"))
    runner.submit(job)
    assert wait_for(runner.job_store, job.id).status == JobStatus.FAILED


def test_only_pending_jobs_can_be_submitted(runner):
    job = runner.create("srv", "ping")
    job.status = JobStatus.RUNNING
    with pytest.raises(ValueError):
        runner.submit(job)


def test_completed_at_is_set_once():
    job = ToolJob(server_id="s", tool_name="t")
    job.mark_completed(JobStatus.SUCCESS, "{}")
    first = job.completed_at
    with pytest.raises(ValueError):
        job.mark_completed(JobStatus.FAILED, "{}")
    assert job.completed_at == first
    assert job.status == JobStatus.SUCCESS


def test_non_terminal_completion_rejected():
    job = ToolJob(server_id="s", tool_name="t")
    with pytest.raises(ValueError):
        job.mark_completed(JobStatus.RUNNING, "{}")
    assert job.completed_at is None


def test_background_jobs_and_foreground_calls_do_not_cross(runner, registry, fake_config):
    registry.register(fake_config("shared"))
    jobs = [runner.create("shared", "ping", {"job": i}) for i in range(20)]
    foreground_mismatches = []

    def foreground():
        for i in range(20):
            sent = {"foreground": i}
            result = registry.call_tool("shared", "ping", sent)
            if result["arguments"] != sent:
                foreground_mismatches.append((sent, result))

    thread = threading.Thread(target=foreground)
    thread.start()
    for job in jobs:
        runner.submit(job)
    thread.join()

    assert foreground_mismatches == []
    for i, job in enumerate(jobs):
        done = wait_for(runner.job_store, job.id)
        assert done.status == JobStatus.SUCCESS
        assert json.loads(done.result_json)["arguments"] == {"job": i}


class FirstUpdateFailsJobStore(InMemoryJobStore):
    def __init__(self):
        super().__init__()
        self.updates = 0

    def update(self, job):
        self.updates += 1
        if self.updates == 1:
            raise RuntimeError("store unavailable")
        super().update(job)


def test_failed_running_write_still_completes_job(registry):
    runner = ToolJobRunner(registry, FirstUpdateFailsJobStore(), max_workers=1)
    job = runner.create("srv", "ping")
    runner.submit(job)
    runner.shutdown(wait=True)

    done = runner.job_store.get(job.id)
    assert done.status == JobStatus.FAILED
    assert json.loads(done.result_json) == {"error": "store unavailable"}
    assert done.completed_at is not None


class ReadOnlyJobStore(InMemoryJobStore):
    def update(self, job):
        raise RuntimeError("read-only")


def test_unrecordable_outcome_is_logged(registry, caplog):
    runner = ToolJobRunner(registry, ReadOnlyJobStore(), max_workers=1)
    job = runner.create("srv", "ping")
    runner.submit(job)
    runner.shutdown(wait=True)

    assert f"Job {job.id} outcome could not be recorded: read-only" in caplog.text
    assert runner.job_store.get(job.id).status == JobStatus.PENDING


def test_job_cannot_be_submitted_twice(runner, registry, fake_config):
    registry.register(fake_config("srv"))
    job = runner.create("srv", "ping")

    runner.submit(job)
    with pytest.raises(ValueError, match="expected pending"):
        runner.submit(job)

    assert wait_for(runner.job_store, job.id).status == JobStatus.SUCCESS
    runner.shutdown(wait=True)
    assert runner.job_store.transitions == [JobStatus.RUNNING, JobStatus.SUCCESS]
