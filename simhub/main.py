"""SimHub orchestrator - FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager
from logging import Filter

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from simhub.api.errors import register_error_handlers
from simhub.api.v1 import simulations as simulations_api
from simhub.api.v1 import visualizations as visualizations_api
from simhub.api.v1.health import router as health_root_router
from simhub.api.v1.router import v1_router
from simhub.config import Settings, settings
from simhub.core.orchestrator import Orchestrator
from simhub.jobs.in_process_queue import InProcessQueue
from simhub.jobs.runner import SolverRunner, build_runner
from simhub.jobs.store import JobStore
from simhub.solvers.registry import SolverRegistry, registry
from simhub.storage.results import ResultStore
from simhub.tasks.reconciler import Reconciler
from simhub.visualization.provisioner import Provisioner
from simhub.visualization.store import SessionStore
from simhub.visualization.workers import RenderLauncher, build_launcher

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class HealthCheckFilter(Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


def build_orchestrator(
    config: Settings,
    solver_registry: SolverRegistry,
    runner: SolverRunner = None,
    launcher: RenderLauncher = None,
) -> Orchestrator:
    """Wire stores, dispatcher, provisioner and reconciler from settings."""
    results = ResultStore(config.data_dir, ttl_hours=config.result_ttl_hours)
    cases_dir = config.cases_dir()
    os.makedirs(cases_dir, exist_ok=True)

    job_state = session_state = None
    if config.state_dir:
        os.makedirs(config.state_dir, exist_ok=True)
        job_state = os.path.join(config.state_dir, "jobs.json")
        session_state = os.path.join(config.state_dir, "sessions.json")
    jobs = JobStore(persist_path=job_state)
    sessions = SessionStore(persist_path=session_state)

    if runner is None:
        runner = build_runner(config.solver_backend)
    if launcher is None:
        launcher = build_launcher(
            config.render_backend,
            config.render_command,
            config.render_host,
            config.stream_path,
            log_dir=os.path.join(config.data_dir, "logs"),
        )

    dispatcher = InProcessQueue(
        jobs,
        solver_registry,
        runner,
        results,
        cases_dir=cases_dir,
        slots=config.solver_slots,
        max_queue_depth=config.max_queue_depth,
        timeout_seconds=config.job_timeout_seconds,
        cancel_grace_seconds=config.cancel_grace_seconds,
    )
    provisioner = Provisioner(
        sessions,
        jobs,
        launcher,
        results,
        slots=config.render_slots,
        max_queue_depth=config.max_queue_depth,
        timeout_seconds=config.session_timeout_seconds,
        probe_interval_seconds=config.ready_probe_interval_seconds,
        cancel_grace_seconds=config.cancel_grace_seconds,
        port_base=config.render_port_base,
    )
    reconciler = Reconciler(
        jobs,
        sessions,
        dispatcher,
        provisioner,
        results,
        interval_seconds=config.reconcile_interval_seconds,
        job_timeout_seconds=config.job_timeout_seconds,
        session_timeout_seconds=config.session_timeout_seconds,
    )
    return Orchestrator(
        jobs,
        sessions,
        solver_registry,
        dispatcher,
        provisioner,
        results,
        reconciler,
        cases_dir=cases_dir,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting SimHub orchestrator on port %d", settings.port)
    logger.info("Data dir: %s", settings.data_dir)
    logger.info("Case library: %s", settings.cases_dir())

    registry.discover()
    logger.info("Found %d solver(s)", len(registry.list_solvers()))

    orchestrator = build_orchestrator(settings, registry)
    await orchestrator.start()
    logger.info(
        "Dispatcher started (%d solver slot(s), %d render slot(s))",
        settings.solver_slots,
        settings.render_slots,
    )

    simulations_api.set_orchestrator(orchestrator)
    visualizations_api.set_orchestrator(orchestrator)

    yield

    logger.info("Shutting down SimHub orchestrator")
    simulations_api.set_orchestrator(None)
    visualizations_api.set_orchestrator(None)
    await orchestrator.stop()


app = FastAPI(
    title="SimHub Orchestrator",
    description="Lifecycle orchestration for CFD/FEA simulation jobs and visualization sessions",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("simhub.main:app", host="0.0.0.0", port=settings.port)
