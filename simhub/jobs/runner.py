"""Execution backends that start solver processes for the dispatcher."""

import os
from abc import ABC, abstractmethod
from typing import List

from simhub.core.processes import ExecutionHandle, spawn_process
from simhub.jobs.models import JobRecord


class SolverRunner(ABC):

    @abstractmethod
    async def launch(self, job: JobRecord, argv: List[str], workdir: str) -> ExecutionHandle:
        """Start the solver for ``job``. Returns as soon as it is running."""
        ...


class LocalProcessRunner(SolverRunner):
    """Runs solvers as child processes of the service."""

    async def launch(self, job: JobRecord, argv: List[str], workdir: str) -> ExecutionHandle:
        return await spawn_process(
            job.worker_ref or f"sim-{job.id}",
            argv,
            cwd=workdir,
            log_path=os.path.join(workdir, "solver.log"),
        )


def build_runner(backend: str) -> SolverRunner:
    if backend == "local":
        return LocalProcessRunner()
    raise ValueError(f"Unknown solver backend '{backend}'")
