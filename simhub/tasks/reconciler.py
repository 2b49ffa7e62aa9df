"""
Reconciler - periodically matches live external work against the stores.

Each pass:
  - terminates solver handles whose job is gone or already terminal,
  - terminates render workers whose session is gone or failed, and releases
    the slot of a ready session whose worker has exited,
  - force-fails running jobs and unready sessions that nothing is driving
    any more once they are past their deadline,
  - removes expired result directories no record references.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Dict, Optional

from simhub.core.errors import DeadlineExceededError
from simhub.core.wire import utcnow
from simhub.jobs.dispatcher import JobDispatcher
from simhub.jobs.models import JobStatus
from simhub.jobs.store import JobStore
from simhub.storage.results import ResultStore
from simhub.visualization.models import SessionStatus
from simhub.visualization.provisioner import Provisioner
from simhub.visualization.store import SessionStore

logger = logging.getLogger(__name__)


class Reconciler:

    def __init__(
        self,
        jobs: JobStore,
        sessions: SessionStore,
        dispatcher: JobDispatcher,
        provisioner: Provisioner,
        results: ResultStore,
        *,
        interval_seconds: float = 60,
        job_timeout_seconds: float = 1800,
        session_timeout_seconds: float = 300,
    ):
        self._jobs = jobs
        self._sessions = sessions
        self._dispatcher = dispatcher
        self._provisioner = provisioner
        self._results = results
        self._interval = interval_seconds
        self._job_timeout = job_timeout_seconds
        self._session_timeout = session_timeout_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.reconcile_once()
            except Exception:
                logger.exception("Reconciliation pass failed")

    async def reconcile_once(self) -> Dict[str, int]:
        stats = {
            "solversTerminated": await self._reap_solvers(),
            "workersTerminated": await self._reap_workers(),
            "jobsFailed": self._fail_stuck_jobs(),
            "sessionsFailed": self._fail_stuck_sessions(),
            "resultsRemoved": self._cleanup_results(),
        }
        if any(stats.values()):
            logger.info("Reconciliation: %s", stats)
        return stats

    async def _reap_solvers(self) -> int:
        terminated = 0
        for job_id, handle in self._dispatcher.live_handles().items():
            job = self._jobs.get(job_id)
            if job is not None and not job.is_terminal:
                continue
            logger.info("Terminating unreferenced solver %s (job %s)", handle.ref, job_id)
            if await self._dispatcher.reap(job_id):
                terminated += 1
        return terminated

    async def _reap_workers(self) -> int:
        terminated = await self._provisioner.reap_orphans()
        for key, worker in self._provisioner.live_workers().items():
            session = self._sessions.get(key)
            if session is None or session.status == SessionStatus.FAILED:
                logger.info("Terminating unreferenced render worker %s", worker.ref)
            elif session.status == SessionStatus.READY and not worker.handle.is_alive():
                logger.warning("Render worker %s of session %s exited; releasing its slot", worker.ref, key)
            else:
                continue
            await self._provisioner.teardown(key)
            terminated += 1
        return terminated

    def _fail_stuck_jobs(self) -> int:
        cutoff = utcnow() - timedelta(seconds=self._job_timeout)
        failed = 0
        for job in self._jobs.list():
            if job.status != JobStatus.RUNNING or self._dispatcher.is_active(job.id):
                continue
            if job.started_at is None or job.started_at > cutoff:
                continue
            error = DeadlineExceededError(
                f"job was still running after {self._job_timeout:.0f}s with no live solver"
            )
            if self._jobs.mark_failed(job.id, error) is not None:
                failed += 1
        return failed

    def _fail_stuck_sessions(self) -> int:
        cutoff = utcnow() - timedelta(seconds=self._session_timeout)
        failed = 0
        for session in self._sessions.list():
            if session.is_terminal or self._provisioner.is_provisioning(session.id):
                continue
            if session.updated_at > cutoff:
                continue
            error = DeadlineExceededError(
                f"session was not ready after {self._session_timeout:.0f}s and nothing is provisioning it"
            )
            if self._sessions.mark_failed(session.id, error) is not None:
                failed += 1
        return failed

    def _cleanup_results(self) -> int:
        jobs = self._jobs.list()
        referenced = [self._results.result_path_for(j.id) for j in jobs]
        referenced += [j.result_path for j in jobs]
        referenced += [s.result_path for s in self._sessions.list()]
        return self._results.cleanup_expired(
            referenced_paths=referenced,
            live_job_ids=[j.id for j in jobs],
        )
