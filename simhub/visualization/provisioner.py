"""Visualization Provisioner: boots a rendering worker per session.

Each session gets its own provisioning task:

1. wait until the referenced job is ``completed`` (a job that fails or
   disappears fails the session at once),
2. take a render slot (sessions beyond ``slots`` queue here in ``pending``),
3. launch the worker and record ``workerRef`` (``pending -> running``),
4. probe until the worker listens, negotiate the stream endpoint and record
   it (``running -> ready``).

The session timeout is a single deadline over all four steps, counted from
the session's ``createdAt``.

A slot is held for as long as the worker lives, i.e. until the session is
deleted or fails or its worker exits, so ``slots`` bounds the number of live
render workers.
"""

import asyncio
import logging
import os
from typing import Dict, Optional, Set

from simhub.core.errors import (
    DeadlineExceededError,
    OrchestratorError,
    ProvisioningError,
    ResourceExhaustedError,
)
from simhub.core.wire import utcnow
from simhub.jobs.models import JobStatus
from simhub.jobs.store import JobStore
from simhub.storage.results import ResultStore
from simhub.visualization.models import SessionRecord
from simhub.visualization.store import SessionStore
from simhub.visualization.workers import PortPool, RenderLauncher, RenderWorker

logger = logging.getLogger(__name__)


class Provisioner:

    def __init__(
        self,
        sessions: SessionStore,
        jobs: JobStore,
        launcher: RenderLauncher,
        results: ResultStore,
        *,
        slots: int = 2,
        max_queue_depth: int = 0,
        timeout_seconds: float = 300,
        probe_interval_seconds: float = 1.0,
        cancel_grace_seconds: float = 10,
        port_base: int = 9000,
    ):
        self._sessions = sessions
        self._jobs = jobs
        self._launcher = launcher
        self._results = results
        self._slot_count = max(1, slots)
        self._slots = asyncio.Semaphore(self._slot_count)
        self._max_queue_depth = max_queue_depth
        self._timeout = timeout_seconds
        self._probe_interval = probe_interval_seconds
        self._cancel_grace = cancel_grace_seconds
        self._ports = PortPool(port_base)

        self._tasks: Dict[str, asyncio.Task] = {}
        self._workers: Dict[str, RenderWorker] = {}
        self._orphans: Dict[str, RenderWorker] = {}
        self._holding: Set[str] = set()
        self._phase: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def _waiting(self) -> int:
        return sum(1 for session_id in self._tasks if session_id not in self._holding)

    def ensure_capacity(self) -> None:
        waiting = self._waiting()
        if self._max_queue_depth and waiting >= self._max_queue_depth:
            raise ResourceExhaustedError(
                f"render queue is full ({waiting} session(s) waiting); retry later"
            )

    def submit(self, session_id: str, wait_for_job: bool) -> None:
        task = asyncio.create_task(self._provision(session_id, wait_for_job))
        self._tasks[session_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(session_id, None))

    def is_provisioning(self, session_id: str) -> bool:
        return session_id in self._tasks

    async def teardown(self, session_id: str) -> None:
        """Stop provisioning and terminate the session's worker, if any. Idempotent."""
        task = self._tasks.get(session_id)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._tasks.pop(session_id, None)
        await self._release(session_id)

    def live_workers(self) -> Dict[str, RenderWorker]:
        """Workers owned by a session, keyed by session id. Orphans are not included."""
        return dict(self._workers)

    async def reap_orphans(self) -> int:
        """Retry termination of workers that did not stop on teardown."""
        stopped = 0
        for ref, worker in list(self._orphans.items()):
            if await worker.handle.terminate(self._cancel_grace):
                self._orphans.pop(ref, None)
                self._ports.release(worker.port)
                stopped += 1
        return stopped

    def stats(self) -> Dict[str, int]:
        return {
            "slots": self._slot_count,
            "active": len(self._holding),
            "queued": self._waiting(),
            "liveWorkers": len(self._workers) + len(self._orphans),
        }

    async def stop(self) -> None:
        for session_id in list(self._tasks) + list(self._workers):
            await self.teardown(session_id)
        await self.reap_orphans()

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def _provision(self, session_id: str, wait_for_job: bool) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return

        remaining = self._timeout - (utcnow() - session.created_at).total_seconds()
        keep = False
        try:
            keep = await asyncio.wait_for(
                self._attempt(session, wait_for_job), timeout=max(0.0, remaining)
            )
        except asyncio.TimeoutError:
            phase = self._phase.get(session_id, "provisioning")
            self._fail(
                session_id,
                DeadlineExceededError(f"session was not ready within {self._timeout:.0f}s ({phase})"),
            )
        except OrchestratorError as e:
            self._fail(session_id, e)
        except Exception as e:
            logger.exception("Session %s: unexpected provisioning error", session_id)
            self._fail(session_id, ProvisioningError(f"{type(e).__name__}: {e}"))
        finally:
            self._phase.pop(session_id, None)
            if not keep:
                await self._release(session_id)

    async def _attempt(self, session: SessionRecord, wait_for_job: bool) -> bool:
        if wait_for_job:
            self._phase[session.id] = "waiting for simulation"
            await self._await_completed_job(session)
        self._phase[session.id] = "waiting for a render slot"
        await self._slots.acquire()
        self._holding.add(session.id)
        self._phase[session.id] = "starting render worker"
        return await self._boot(session.id)

    async def _boot(self, session_id: str) -> bool:
        """Launch and wait for the worker. Returns True when the session is ready."""
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return False

        data_path = self._results.resolve(session.result_path)
        if not os.path.isdir(data_path):
            raise ProvisioningError(f"result path '{session.result_path}' does not exist")

        port = self._ports.allocate()
        try:
            worker = await self._launcher.launch(session, data_path, port)
        except asyncio.CancelledError:
            self._ports.release(port)
            raise
        except Exception as e:
            self._ports.release(port)
            raise ProvisioningError(f"failed to start render worker: {e}") from e
        self._workers[session_id] = worker

        if self._sessions.mark_running(session_id, worker.ref) is None:
            logger.info("Session %s was removed while its worker started", session_id)
            return False

        await self._await_listening(worker)

        endpoint = self._launcher.endpoint(worker)
        if not endpoint:
            raise ProvisioningError(f"render worker {worker.ref} did not provide a stream endpoint")
        if self._sessions.mark_ready(session_id, endpoint) is None:
            logger.info("Session %s was removed before it became ready", session_id)
            return False
        logger.info("Session %s ready at %s", session_id, endpoint)
        return True

    async def _await_completed_job(self, session: SessionRecord) -> None:
        while True:
            job = self._jobs.get(session.simulation_id)
            if job is None:
                raise ProvisioningError(
                    f"simulation {session.simulation_id} was deleted before it completed"
                )
            if job.status == JobStatus.COMPLETED:
                return
            if job.status == JobStatus.FAILED:
                raise ProvisioningError(
                    f"simulation {session.simulation_id} failed: {job.error}"
                )
            await asyncio.sleep(self._probe_interval)

    async def _await_listening(self, worker: RenderWorker) -> None:
        while True:
            if not worker.handle.is_alive():
                tail = worker.handle.log_tail()
                message = f"render worker {worker.ref} exited before it was ready"
                if tail:
                    message = f"{message}:\n{tail}"
                raise ProvisioningError(message)
            if await self._launcher.probe(worker):
                return
            await asyncio.sleep(self._probe_interval)

    def _fail(self, session_id: str, error: OrchestratorError) -> Optional[SessionRecord]:
        logger.warning("Session %s failed (%s): %s", session_id, error.kind, error)
        return self._sessions.mark_failed(session_id, error)

    async def _release(self, session_id: str) -> None:
        worker = self._workers.pop(session_id, None)
        if worker is not None:
            if await worker.handle.terminate(self._cancel_grace):
                self._ports.release(worker.port)
            else:
                logger.warning("Worker %s did not stop; left for reconciliation", worker.ref)
                self._orphans[worker.ref] = worker
        if session_id in self._holding:
            self._holding.discard(session_id)
            self._slots.release()
