"""Tests for job submission and the in-process execution dispatcher."""

import asyncio
import os

import pytest

from conftest import FEA_DECK
from simhub.core.errors import NotFoundError, ResourceExhaustedError, ValidationError
from simhub.jobs.models import JobStatus


async def _chunks(*parts):
    for part in parts:
        yield part


@pytest.mark.asyncio
async def test_create_returns_pending_before_solver_runs(orchestrator, launched, wait_until):
    job = await orchestrator.create_job("cavity", "cfd", "motorBike")

    assert job.status == JobStatus.PENDING
    assert job.worker_ref is None
    assert job.input.config_path == "motorBike"

    handle = await launched(job.id)
    running = orchestrator.get_job(job.id)
    assert running.status == JobStatus.RUNNING
    assert running.worker_ref == handle.ref == f"sim-{job.id[:8]}"
    assert running.started_at is not None

    handle.finish(0)
    await wait_until(lambda: orchestrator.get_job(job.id).status == JobStatus.COMPLETED)
    done = orchestrator.get_job(job.id)
    assert done.result_path == f"results/{job.id}"
    assert done.completed_at >= done.started_at
    assert os.path.isfile(os.path.join(orchestrator.results.resolve(done.result_path), "system", "controlDict"))


@pytest.mark.asyncio
async def test_nonzero_exit_fails_job(orchestrator, launched, wait_until):
    job = await orchestrator.create_job("beam", "fea", "beam")
    (await launched(job.id)).finish(3)

    await wait_until(lambda: orchestrator.get_job(job.id).status == JobStatus.FAILED)
    failed = orchestrator.get_job(job.id)
    assert failed.error_kind == "execution"
    assert "code 3" in failed.error
    assert "fake solver output" in failed.error
    assert failed.result_path is None


@pytest.mark.asyncio
async def test_launch_failure_fails_job(orchestrator, runner, wait_until):
    runner.fail_with = FileNotFoundError("ccx: not found")
    job = await orchestrator.create_job("beam", "fea", "beam")

    await wait_until(lambda: orchestrator.get_job(job.id).status == JobStatus.FAILED)
    failed = orchestrator.get_job(job.id)
    assert failed.error_kind == "execution"
    assert "ccx: not found" in failed.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,job_type,config_path,message",
    [
        ("", "cfd", "motorBike", "name is required"),
        ("x", "thermal", "motorBike", "invalid simulation type"),
        ("x", None, "motorBike", "invalid simulation type"),
        ("x", "cfd", None, "input is required"),
        ("x", "cfd", "../escape", "invalid configPath"),
        ("x", "cfd", "noSuchCase", "unknown case"),
    ],
)
async def test_invalid_requests_create_nothing(orchestrator, name, job_type, config_path, message):
    with pytest.raises(ValidationError, match=message):
        await orchestrator.create_job(name, job_type, config_path)
    assert orchestrator.list_jobs() == []


@pytest.mark.asyncio
async def test_concurrency_is_bounded_by_slots(make_orchestrator, runner, launched, wait_until):
    orchestrator = await make_orchestrator(solver_slots=2)
    jobs = [await orchestrator.create_job(f"run-{i}", "cfd", "motorBike") for i in range(3)]

    await wait_until(lambda: len(runner.handles) == 2)
    await asyncio.sleep(0.05)
    statuses = [orchestrator.get_job(j.id).status for j in jobs]
    assert statuses.count(JobStatus.RUNNING) == 2
    assert statuses.count(JobStatus.PENDING) == 1

    first = next(iter(runner.handles))
    runner.handles[first].finish(0)

    waiting = next(j.id for j in jobs if j.id not in runner.handles)
    await launched(waiting)
    assert orchestrator.get_job(waiting).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_queue_depth_cap(make_orchestrator, launched):
    orchestrator = await make_orchestrator(solver_slots=1, max_queue_depth=1)
    first = await orchestrator.create_job("a", "cfd", "motorBike")
    await launched(first.id)
    await orchestrator.create_job("b", "cfd", "motorBike")

    with pytest.raises(ResourceExhaustedError):
        await orchestrator.create_job("c", "cfd", "motorBike")
    assert len(orchestrator.list_jobs()) == 2


@pytest.mark.asyncio
async def test_deleted_queued_job_frees_queue_capacity(make_orchestrator, runner, launched):
    orchestrator = await make_orchestrator(solver_slots=1, max_queue_depth=1)
    first = await orchestrator.create_job("a", "cfd", "motorBike")
    handle = await launched(first.id)
    queued = await orchestrator.create_job("b", "cfd", "motorBike")

    await orchestrator.delete_job(queued.id)
    assert orchestrator.dispatcher.stats()["queued"] == 0

    replacement = await orchestrator.create_job("c", "cfd", "motorBike")
    assert sorted(j.status.value for j in orchestrator.list_jobs()) == ["pending", "running"]

    handle.finish(0)
    await launched(replacement.id)
    assert queued.id not in runner.handles


@pytest.mark.asyncio
async def test_timeout_terminates_solver(make_orchestrator, launched, wait_until):
    orchestrator = await make_orchestrator(job_timeout_seconds=0.2)
    job = await orchestrator.create_job("slow", "cfd", "motorBike")
    handle = await launched(job.id)

    await wait_until(lambda: orchestrator.get_job(job.id).status == JobStatus.FAILED)
    failed = orchestrator.get_job(job.id)
    assert failed.error_kind == "timeout"
    assert handle.terminate_calls >= 1
    assert not handle.is_alive()


@pytest.mark.asyncio
async def test_delete_pending_job_never_runs(make_orchestrator, runner, launched, wait_until):
    orchestrator = await make_orchestrator(solver_slots=1)
    blocker = await orchestrator.create_job("blocker", "cfd", "motorBike")
    handle = await launched(blocker.id)
    queued = await orchestrator.create_job("queued", "cfd", "motorBike")

    await orchestrator.delete_job(queued.id)
    with pytest.raises(NotFoundError):
        orchestrator.get_job(queued.id)

    handle.finish(0)
    await wait_until(lambda: orchestrator.dispatcher.stats()["queued"] == 0)
    await asyncio.sleep(0.05)
    assert queued.id not in runner.handles


@pytest.mark.asyncio
async def test_delete_running_job_stops_solver(orchestrator, launched, wait_until):
    job = await orchestrator.create_job("cavity", "cfd", "motorBike")
    handle = await launched(job.id)

    await orchestrator.delete_job(job.id)

    assert handle.terminate_calls == 1
    assert not handle.is_alive()
    with pytest.raises(NotFoundError):
        orchestrator.get_job(job.id)
    await wait_until(lambda: not orchestrator.dispatcher.is_active(job.id))
    assert orchestrator.jobs.get(job.id) is None


@pytest.mark.asyncio
async def test_delete_twice_is_not_found(orchestrator):
    job = await orchestrator.create_job("cavity", "cfd", "motorBike")
    await orchestrator.delete_job(job.id)
    with pytest.raises(NotFoundError):
        await orchestrator.delete_job(job.id)


@pytest.mark.asyncio
async def test_upload_job_runs_staged_deck(orchestrator, launched, wait_until):
    job = await orchestrator.create_job_from_upload("beam", "fea", "beam.inp", _chunks(FEA_DECK[:10], FEA_DECK[10:]))

    assert job.status == JobStatus.PENDING
    assert job.input.filename == "beam.inp"
    assert job.input.archive_path == f"inputs/{job.id}/beam.inp"
    assert os.path.isfile(orchestrator.results.resolve(job.input.archive_path))

    (await launched(job.id)).finish(0)
    await wait_until(lambda: orchestrator.get_job(job.id).status == JobStatus.COMPLETED)
    staged = os.path.join(orchestrator.results.get_workdir(job.id), "input.inp")
    with open(staged, "rb") as fh:
        assert fh.read() == FEA_DECK


@pytest.mark.asyncio
async def test_invalid_upload_creates_nothing(orchestrator):
    with pytest.raises(ValidationError, match="missing keywords"):
        await orchestrator.create_job_from_upload("beam", "fea", "beam.inp", _chunks(b"*HEADING only\n"))

    assert orchestrator.list_jobs() == []
    assert os.listdir(os.path.join(orchestrator.results.base_dir, "inputs")) == []


@pytest.mark.asyncio
async def test_upload_size_cap_is_enforced_while_streaming(orchestrator, monkeypatch):
    from simhub.config import settings

    monkeypatch.setattr(settings, "max_fea_upload_mb", 1)
    big = b"x" * (1024 * 1024)
    with pytest.raises(ValidationError, match="too large"):
        await orchestrator.create_job_from_upload("beam", "fea", "beam.inp", _chunks(FEA_DECK, big))
    assert orchestrator.list_jobs() == []


@pytest.mark.asyncio
async def test_upload_wrong_suffix(orchestrator):
    with pytest.raises(ValidationError, match=r"\.tar\.gz"):
        await orchestrator.create_job_from_upload("cavity", "cfd", "cavity.zip", _chunks(b"PK"))
    assert orchestrator.list_jobs() == []
