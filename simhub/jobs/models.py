"""Simulation job record and its state machine."""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from pydantic import Field

from simhub.core.wire import RecordModel, utcnow


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    CFD = "cfd"  # OpenFOAM
    FEA = "fea"  # CalculiX


JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobInput(RecordModel):
    """Either a named case from the case library or a staged upload.

    ``archive_path`` is relative to the data directory, like ``resultPath``.
    """
    config_path: Optional[str] = None
    archive_path: Optional[str] = None
    filename: Optional[str] = None

    def is_present(self) -> bool:
        return bool(self.config_path or self.archive_path)


class JobRecord(RecordModel):
    """Tracks the lifecycle of one solver run."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    type: JobType
    input: JobInput
    status: JobStatus = JobStatus.PENDING
    worker_ref: Optional[str] = None
    result_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
