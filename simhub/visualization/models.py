"""Visualization session record and its state machine."""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from pydantic import Field

from simhub.core.wire import RecordModel, utcnow


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


# pending -> failed covers sessions whose job never completes: they fail
# before a worker is ever requested.
SESSION_TRANSITIONS = {
    SessionStatus.PENDING: {SessionStatus.RUNNING, SessionStatus.FAILED},
    SessionStatus.RUNNING: {SessionStatus.READY, SessionStatus.FAILED},
    SessionStatus.READY: set(),
    SessionStatus.FAILED: set(),
}

TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.READY, SessionStatus.FAILED})


class SessionRecord(RecordModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    simulation_id: str
    result_path: str
    status: SessionStatus = SessionStatus.PENDING
    worker_ref: Optional[str] = None
    stream_endpoint: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES
