"""Session Store: the source of truth for visualization sessions."""

from typing import List, Optional

from simhub.core.errors import OrchestratorError
from simhub.core.wire import utcnow
from simhub.storage.records import RecordStore
from simhub.visualization.models import SESSION_TRANSITIONS, SessionRecord, SessionStatus


class SessionStore(RecordStore[SessionRecord]):
    record_cls = SessionRecord
    kind = "session"
    transitions = SESSION_TRANSITIONS

    def list_for_simulation(self, simulation_id: str) -> List[SessionRecord]:
        return [s for s in self.list() if s.simulation_id == simulation_id]

    def mark_running(self, session_id: str, worker_ref: str) -> Optional[SessionRecord]:
        return self.transition(
            session_id,
            SessionStatus.PENDING,
            SessionStatus.RUNNING,
            worker_ref=worker_ref,
            updated_at=utcnow(),
        )

    def mark_ready(self, session_id: str, stream_endpoint: str) -> Optional[SessionRecord]:
        # READY is terminal, so the endpoint is written exactly once.
        if not stream_endpoint:
            raise ValueError("stream endpoint must be non-empty")
        return self.transition(
            session_id,
            SessionStatus.RUNNING,
            SessionStatus.READY,
            stream_endpoint=stream_endpoint,
            updated_at=utcnow(),
        )

    def mark_failed(self, session_id: str, error: OrchestratorError) -> Optional[SessionRecord]:
        return self.transition(
            session_id,
            (SessionStatus.PENDING, SessionStatus.RUNNING),
            SessionStatus.FAILED,
            error=str(error) or error.kind,
            error_kind=error.kind,
            updated_at=utcnow(),
        )
