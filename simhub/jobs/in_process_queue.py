"""In-process job queue using asyncio.

A fixed pool of worker loops (one per solver slot) pulls job ids off a FIFO
queue, so at most ``slots`` solvers run at once and the rest wait in
``pending``. The Job Store is only touched on dispatch and on the final
outcome, never mid-run.
"""

import asyncio
import logging
import traceback
from typing import Dict, List, Optional, Set

from simhub.core.errors import (
    DeadlineExceededError,
    ExecutionError,
    ResourceExhaustedError,
)
from simhub.core.processes import ExecutionHandle
from simhub.jobs.dispatcher import JobDispatcher
from simhub.jobs.runner import SolverRunner
from simhub.jobs.store import JobStore
from simhub.solvers.registry import SolverRegistry
from simhub.storage.results import ResultStore

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Local async job queue with a bounded number of concurrent solvers."""

    def __init__(
        self,
        store: JobStore,
        registry: SolverRegistry,
        runner: SolverRunner,
        results: ResultStore,
        *,
        cases_dir: str,
        slots: int = 2,
        max_queue_depth: int = 0,
        timeout_seconds: float = 1800,
        cancel_grace_seconds: float = 10,
    ):
        self._store = store
        self._registry = registry
        self._runner = runner
        self._results = results
        self._cases_dir = cases_dir
        self._slots = max(1, slots)
        self._max_queue_depth = max_queue_depth
        self._timeout = timeout_seconds
        self._cancel_grace = cancel_grace_seconds

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._queued: Set[str] = set()
        self._handles: Dict[str, ExecutionHandle] = {}
        self._inflight: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._workers: List[asyncio.Task] = []
        self._running = False

    def ensure_capacity(self) -> None:
        waiting = len(self._queued)
        if self._max_queue_depth and waiting >= self._max_queue_depth:
            raise ResourceExhaustedError(
                f"solver queue is full ({waiting} job(s) waiting); retry later"
            )

    async def submit(self, job_id: str, check_capacity: bool = True) -> None:
        if check_capacity:
            self.ensure_capacity()
        self._queued.add(job_id)
        self._queue.put_nowait(job_id)
        logger.info("Job %s queued (%d waiting)", job_id, len(self._queued))

    async def cancel(self, job_id: str) -> bool:
        if job_id in self._queued:
            # Still queued: the stale id is skipped when a worker pulls it.
            self._queued.discard(job_id)
            self._cancelled.add(job_id)
            return True
        if job_id not in self._inflight:
            return False
        self._cancelled.add(job_id)
        handle = self._handles.get(job_id)
        if handle is not None:
            logger.info("Cancelling job %s (%s)", job_id, handle.ref)
            if not await handle.terminate(self._cancel_grace):
                logger.warning("Job %s did not stop; left for reconciliation", job_id)
        return True

    def is_active(self, job_id: str) -> bool:
        return job_id in self._inflight or job_id in self._handles

    def live_handles(self) -> Dict[str, ExecutionHandle]:
        return dict(self._handles)

    async def reap(self, job_id: str) -> bool:
        handle = self._handles.get(job_id)
        if handle is None:
            return True
        stopped = await handle.terminate(self._cancel_grace)
        if stopped:
            self._handles.pop(job_id, None)
        return stopped

    def stats(self) -> Dict[str, int]:
        return {
            "slots": self._slots,
            "active": len(self._inflight),
            "queued": len(self._queued),
            "liveHandles": len(self._handles),
        }

    async def start(self) -> None:
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self._slots)
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        for job_id in list(self._handles):
            await self.reap(job_id)

    async def _worker_loop(self, slot: int) -> None:
        """Process jobs one at a time from the shared queue."""
        while self._running:
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            self._queued.discard(job_id)

            try:
                await self._run(job_id)
            except Exception as e:
                logger.exception("Slot %d: unexpected error running job %s", slot, job_id)
                self._store.mark_failed(
                    job_id,
                    ExecutionError(f"{type(e).__name__}: {e}\n{traceback.format_exc()}"),
                )

    async def _run(self, job_id: str) -> None:
        job = self._store.get(job_id)
        if job is None or job_id in self._cancelled:
            self._cancelled.discard(job_id)
            logger.info("Job %s was cancelled before dispatch; skipping", job_id)
            return

        self._inflight.add(job_id)
        try:
            await self._execute(job_id, job.type.value)
        finally:
            self._inflight.discard(job_id)
            self._cancelled.discard(job_id)

    async def _execute(self, job_id: str, job_type: str) -> None:
        job = self._store.mark_running(job_id, worker_ref=f"sim-{job_id[:8]}")
        if job is None:
            logger.info("Job %s was removed before it could start; skipping", job_id)
            return

        workdir = self._results.get_workdir(job_id)
        loop = asyncio.get_running_loop()
        try:
            if job.input.archive_path:
                staged_input = job.input.model_copy(
                    update={"archive_path": self._results.resolve(job.input.archive_path)}
                )
                job = job.model_copy(update={"input": staged_input})
            adapter = self._registry.require(job_type)
            await loop.run_in_executor(None, adapter.stage, job, workdir, self._cases_dir)
            handle = await self._runner.launch(job, adapter.command(workdir), workdir)
        except Exception as e:
            logger.warning("Job %s failed to start: %s", job_id, e)
            self._store.mark_failed(job_id, ExecutionError(f"failed to start solver: {e}"))
            return

        self._handles[job_id] = handle
        if job_id in self._cancelled:
            await handle.terminate(self._cancel_grace)

        outcome: Optional[int] = None
        try:
            outcome = await asyncio.wait_for(handle.wait(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Job %s exceeded %.0fs, terminating", job_id, self._timeout)
            await handle.terminate(self._cancel_grace)
            self._store.mark_failed(
                job_id,
                DeadlineExceededError(f"solver did not finish within {self._timeout:.0f}s"),
            )
            return
        finally:
            if not handle.is_alive():
                self._handles.pop(job_id, None)

        if job_id in self._cancelled:
            logger.info("Job %s cancelled (exit code %s)", job_id, outcome)
            return

        if outcome == 0:
            if self._store.mark_completed(job_id, self._results.result_path_for(job_id)) is None:
                logger.info("Job %s finished after it was deleted", job_id)
            return

        tail = handle.log_tail()
        message = f"solver exited with code {outcome}"
        if tail:
            message = f"{message}:\n{tail}"
        self._store.mark_failed(job_id, ExecutionError(message))
