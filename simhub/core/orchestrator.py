"""Lifecycle orchestrator: the operations behind the v1 API.

Mutating calls only validate, create or remove records and hand work to the
Dispatcher/Provisioner; they never wait for a solver or a render worker.
"""

import asyncio
import logging
import os
import shutil
from typing import AsyncIterator, List, Optional, Tuple

from simhub.core.errors import (
    ExecutionError,
    NotReadyError,
    ProvisioningError,
    TerminalStateError,
    ValidationError,
)
from simhub.jobs.dispatcher import JobDispatcher
from simhub.jobs.models import JobInput, JobRecord, JobStatus, JobType
from simhub.jobs.store import JobStore
from simhub.solvers.base import SolverAdapter, resolve_case_dir
from simhub.solvers.registry import SolverRegistry
from simhub.storage.results import ResultStore
from simhub.tasks.reconciler import Reconciler
from simhub.visualization.models import SessionRecord, SessionStatus
from simhub.visualization.provisioner import Provisioner
from simhub.visualization.store import SessionStore

logger = logging.getLogger(__name__)


class Orchestrator:

    def __init__(
        self,
        jobs: JobStore,
        sessions: SessionStore,
        registry: SolverRegistry,
        dispatcher: JobDispatcher,
        provisioner: Provisioner,
        results: ResultStore,
        reconciler: Reconciler,
        cases_dir: str,
    ):
        self.jobs = jobs
        self.sessions = sessions
        self.registry = registry
        self.dispatcher = dispatcher
        self.provisioner = provisioner
        self.results = results
        self.reconciler = reconciler
        self._cases_dir = cases_dir

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._restore()
        await self.dispatcher.start()
        for job in reversed(self.jobs.list()):
            if job.status == JobStatus.PENDING:
                await self.dispatcher.submit(job.id, check_capacity=False)
        await self.reconciler.start()

    async def stop(self) -> None:
        await self.reconciler.stop()
        await self.provisioner.stop()
        await self.dispatcher.stop()
        await self.reconciler.reconcile_once()

    def _restore(self) -> None:
        """Reload snapshots; work that was in flight cannot be re-attached."""
        for job in self.jobs.load():
            if job.status == JobStatus.RUNNING:
                self.jobs.mark_failed(
                    job.id, ExecutionError("orchestrator restarted while the solver was running")
                )
        for session in self.sessions.load():
            if not session.is_terminal:
                self.sessions.mark_failed(
                    session.id,
                    ProvisioningError("orchestrator restarted before the session was ready"),
                )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(self, name: str, job_type: str, config_path: Optional[str]) -> JobRecord:
        name, kind, adapter = self._validate_job_request(name, job_type)
        if not config_path:
            raise ValidationError("input is required: provide configPath or upload a file")
        resolve_case_dir(self._cases_dir, config_path)
        self.dispatcher.ensure_capacity()

        job = JobRecord(name=name, type=kind, input=JobInput(config_path=config_path))
        return await self._admit(job)

    async def create_job_from_upload(
        self,
        name: str,
        job_type: str,
        filename: Optional[str],
        chunks: AsyncIterator[bytes],
    ) -> JobRecord:
        name, kind, adapter = self._validate_job_request(name, job_type)
        if not filename:
            raise ValidationError("input is required: provide configPath or upload a file")
        filename = os.path.basename(filename)
        adapter.check_filename(filename)
        self.dispatcher.ensure_capacity()

        job = JobRecord(name=name, type=kind, input=JobInput(filename=filename))
        input_dir = self.results.get_input_dir(job.id)
        path = os.path.join(input_dir, filename)
        limit = adapter.spec().max_upload_bytes
        try:
            total = 0
            with open(path, "wb") as dst:
                async for chunk in chunks:
                    total += len(chunk)
                    if total > limit:
                        raise ValidationError(
                            f"file too large (max {limit // (1024 * 1024)}MB)"
                        )
                    dst.write(chunk)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, adapter.validate_upload, path, filename)
        except BaseException:
            self.results.discard_input(job.id)
            raise

        archive_path = self.results.input_path_for(job.id, filename)
        job = job.model_copy(update={"input": JobInput(archive_path=archive_path, filename=filename)})
        try:
            return await self._admit(job)
        except BaseException:
            self.results.discard_input(job.id)
            raise

    async def _admit(self, job: JobRecord) -> JobRecord:
        self.jobs.create(job)
        try:
            await self.dispatcher.submit(job.id)
        except BaseException:
            self.jobs.delete(job.id)
            raise
        return job

    def _validate_job_request(self, name: Optional[str], job_type: Optional[str]) -> Tuple[str, JobType, SolverAdapter]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        try:
            kind = JobType(job_type)
        except ValueError:
            raise ValidationError(
                f"invalid simulation type '{job_type}' (expected one of: "
                f"{', '.join(t.value for t in JobType)})"
            ) from None
        return name, kind, self.registry.require(kind.value)

    def list_jobs(self) -> List[JobRecord]:
        return self.jobs.list()

    def get_job(self, job_id: str) -> JobRecord:
        return self.jobs.require(job_id)

    async def delete_job(self, job_id: str) -> None:
        job = self.jobs.require(job_id)
        # Cancel first so a running solver is asked to stop before its record goes.
        await self.dispatcher.cancel(job_id)
        self.jobs.delete(job_id)
        if job.input.archive_path:
            self.results.discard_input(job_id)
        if not self.sessions.list_for_simulation(job_id) and job.status != JobStatus.RUNNING:
            # Running workdirs are removed by reconciliation once the solver is gone.
            shutil.rmtree(self.results.get_workdir(job_id), ignore_errors=True)

    async def result_archive(self, job_id: str) -> str:
        job = self.jobs.require(job_id)
        if job.status == JobStatus.FAILED:
            raise TerminalStateError(f"simulation '{job_id}' failed; no results are available")
        if job.status != JobStatus.COMPLETED or not job.result_path:
            raise NotReadyError(f"simulation '{job_id}' is {job.status.value}; results are not available yet")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.results.build_archive, job.id, job.result_path)

    # ------------------------------------------------------------------
    # Visualization sessions
    # ------------------------------------------------------------------

    async def create_session(self, simulation_id: Optional[str], result_path: Optional[str] = None) -> SessionRecord:
        if not simulation_id:
            raise ValidationError("simulationId is required")
        job = self.jobs.require(simulation_id)

        if result_path:
            self.results.resolve(result_path)
        else:
            result_path = job.result_path or self.results.result_path_for(job.id)
        self.provisioner.ensure_capacity()

        session = SessionRecord(simulation_id=job.id, result_path=result_path)
        self.sessions.create(session)
        self.provisioner.submit(session.id, wait_for_job=job.status != JobStatus.COMPLETED)
        return session

    def get_session(self, session_id: str) -> SessionRecord:
        return self.sessions.require(session_id)

    def list_sessions(self, simulation_id: str) -> List[SessionRecord]:
        self.jobs.require(simulation_id)
        return self.sessions.list_for_simulation(simulation_id)

    def stream_endpoint(self, session_id: str) -> str:
        session = self.sessions.require(session_id)
        if session.status == SessionStatus.READY and session.stream_endpoint:
            return session.stream_endpoint
        if session.status == SessionStatus.FAILED:
            raise TerminalStateError(f"visualization '{session_id}' failed: {session.error}")
        raise NotReadyError(
            f"visualization '{session_id}' is {session.status.value}; stream endpoint not yet available"
        )

    async def delete_session(self, session_id: str) -> None:
        self.sessions.require(session_id)
        await self.provisioner.teardown(session_id)
        self.sessions.delete(session_id)

    # ------------------------------------------------------------------

    def health(self) -> dict:
        return {
            "jobs": len(self.jobs),
            "sessions": len(self.sessions),
            "solvers": self.dispatcher.stats(),
            "renderers": self.provisioner.stats(),
        }
