"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Dict

from simhub.core.processes import ExecutionHandle


class JobDispatcher(ABC):
    """Abstract interface for running submitted jobs (local or cluster)."""

    @abstractmethod
    def ensure_capacity(self) -> None:
        """Raise ResourceExhaustedError when a new job could not be queued."""
        ...

    @abstractmethod
    async def submit(self, job_id: str, check_capacity: bool = True) -> None:
        """Queue a pending job for execution."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Best-effort stop of a job's execution. Returns True if it was queued or in flight."""
        ...

    @abstractmethod
    def is_active(self, job_id: str) -> bool:
        """True while the dispatcher is still driving the job or holds its handle."""
        ...

    @abstractmethod
    def live_handles(self) -> Dict[str, ExecutionHandle]:
        """Snapshot of execution handles that may still be running, by job id."""
        ...

    @abstractmethod
    async def reap(self, job_id: str) -> bool:
        """Terminate and forget a live handle. Returns True once it is stopped."""
        ...

    @abstractmethod
    def stats(self) -> Dict[str, int]:
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loops)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher and terminate in-flight work."""
        ...
