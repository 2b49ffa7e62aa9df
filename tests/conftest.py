"""
Shared test fixtures for simhub.

Solvers and render workers are replaced by in-memory fakes whose exit and
readiness are driven by the test, so every lifecycle is deterministic and no
OpenFOAM/CalculiX/ParaView binaries are needed.
"""

import asyncio
import os
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from simhub.api.v1 import simulations as simulations_api
from simhub.api.v1 import visualizations as visualizations_api
from simhub.config import Settings
from simhub.core.processes import ExecutionHandle
from simhub.jobs.models import JobRecord, JobStatus
from simhub.jobs.runner import SolverRunner
from simhub.main import app, build_orchestrator
from simhub.solvers.calculix import CalculiXSolver
from simhub.solvers.openfoam import OpenFOAMSolver
from simhub.solvers.registry import SolverRegistry
from simhub.visualization.models import SessionRecord
from simhub.visualization.workers import RenderLauncher, RenderWorker

CFD_CASE_FILES = (
    "system/controlDict",
    "system/fvSchemes",
    "system/fvSolution",
    "constant/transportProperties",
    "constant/polyMesh/points",
)

FEA_DECK = b"*HEADING\nbeam\n*NODE\n1, 0, 0, 0\n*ELEMENT, TYPE=C3D8, ELSET=EALL\n1, 1\n"


# ---------------------------------------------------------------------------
# Fake execution backends
# ---------------------------------------------------------------------------

class FakeHandle(ExecutionHandle):
    """Execution handle whose exit is driven by the test via finish()."""

    def __init__(self, ref: str, stubborn: bool = False):
        self.ref = ref
        self.stubborn = stubborn
        self.code: Optional[int] = None
        self.terminate_calls = 0
        self._done = asyncio.Event()

    def finish(self, code: int = 0) -> None:
        if not self._done.is_set():
            self.code = code
            self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self.code

    def is_alive(self) -> bool:
        return not self._done.is_set()

    async def terminate(self, grace_seconds: float) -> bool:
        self.terminate_calls += 1
        if self.stubborn:
            return False
        self.finish(-15)
        return True

    def log_tail(self, lines: int = 20) -> str:
        return "fake solver output" if self.code not in (None, 0, -15) else ""


class FakeRunner(SolverRunner):
    def __init__(self):
        self.handles: Dict[str, FakeHandle] = {}
        self.argv: Dict[str, List[str]] = {}
        self.fail_with: Optional[Exception] = None

    async def launch(self, job: JobRecord, argv: List[str], workdir: str) -> ExecutionHandle:
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle(job.worker_ref)
        self.handles[job.id] = handle
        self.argv[job.id] = argv
        return handle


class FakeLauncher(RenderLauncher):
    def __init__(self):
        self.workers: Dict[str, RenderWorker] = {}
        self.data_paths: Dict[str, str] = {}
        self.ready = True

    async def launch(self, session: SessionRecord, data_path: str, port: int) -> RenderWorker:
        ref = f"viz-{session.id[:8]}"
        worker = RenderWorker(ref=ref, host="127.0.0.1", port=port, handle=FakeHandle(ref))
        self.workers[session.id] = worker
        self.data_paths[session.id] = data_path
        return worker

    async def probe(self, worker: RenderWorker) -> bool:
        return self.ready

    def endpoint(self, worker: RenderWorker) -> str:
        return f"ws://{worker.host}:{worker.port}/ws"


# ---------------------------------------------------------------------------
# Filesystem fixtures
# ---------------------------------------------------------------------------

def write_cfd_case(root) -> None:
    for rel in CFD_CASE_FILES:
        path = os.path.join(root, rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as fh:
            fh.write("FoamFile {}\n")


@pytest.fixture
def case_library(tmp_path):
    """Case library with one CFD case (motorBike) and one FEA case (beam)."""
    cases = tmp_path / "cases"
    write_cfd_case(str(cases / "motorBike"))
    (cases / "beam").mkdir(parents=True)
    (cases / "beam" / "input.inp").write_bytes(FEA_DECK)
    return cases


@pytest.fixture
def solver_registry():
    reg = SolverRegistry()
    reg.register(OpenFOAMSolver())
    reg.register(CalculiXSolver())
    return reg


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def launcher():
    return FakeLauncher()


# ---------------------------------------------------------------------------
# Orchestrator fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_orchestrator(tmp_path, case_library, solver_registry, runner, launcher):
    """Factory that builds and starts an orchestrator with settings overrides."""
    started = []

    async def _make(**overrides):
        values = dict(
            data_dir=str(tmp_path / "data"),
            case_library_dir=str(case_library),
            solver_slots=2,
            render_slots=2,
            max_queue_depth=32,
            job_timeout_seconds=10,
            session_timeout_seconds=2,
            cancel_grace_seconds=0.1,
            ready_probe_interval_seconds=0.01,
            reconcile_interval_seconds=3600,
            render_port_base=9000,
        )
        values.update(overrides)
        orchestrator = build_orchestrator(Settings(**values), solver_registry, runner, launcher)
        await orchestrator.start()
        started.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in started:
        await orchestrator.stop()


@pytest_asyncio.fixture
async def orchestrator(make_orchestrator):
    return await make_orchestrator()


@pytest_asyncio.fixture
async def test_client(orchestrator):
    simulations_api.set_orchestrator(orchestrator)
    visualizations_api.set_orchestrator(orchestrator)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    simulations_api.set_orchestrator(None)
    visualizations_api.set_orchestrator(None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or fail the test."""

    async def _wait(predicate, timeout: float = 3.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError(f"condition not met within {timeout:.1f}s")
            await asyncio.sleep(interval)

    return _wait


@pytest.fixture
def launched(runner, wait_until):
    """Wait for the dispatcher to launch a job's solver and return its handle."""

    async def _launched(job_id: str) -> FakeHandle:
        await wait_until(lambda: job_id in runner.handles)
        return runner.handles[job_id]

    return _launched


@pytest.fixture
def completed_job(orchestrator, launched, wait_until):
    """Run a case-library job to completion."""

    async def _run(name: str = "cavity", job_type: str = "cfd", config_path: str = "motorBike"):
        job = await orchestrator.create_job(name, job_type, config_path)
        (await launched(job.id)).finish(0)
        await wait_until(lambda: orchestrator.jobs.get(job.id).status == JobStatus.COMPLETED)
        return orchestrator.get_job(job.id)

    return _run
