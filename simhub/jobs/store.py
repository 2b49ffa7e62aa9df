"""Job Store: the source of truth for simulation jobs."""

from typing import Optional

from simhub.core.errors import OrchestratorError
from simhub.core.wire import utcnow
from simhub.jobs.models import JOB_TRANSITIONS, JobRecord, JobStatus
from simhub.storage.records import RecordStore


class JobStore(RecordStore[JobRecord]):
    record_cls = JobRecord
    kind = "job"
    transitions = JOB_TRANSITIONS

    def mark_running(self, job_id: str, worker_ref: str) -> Optional[JobRecord]:
        return self.transition(
            job_id,
            JobStatus.PENDING,
            JobStatus.RUNNING,
            worker_ref=worker_ref,
            started_at=utcnow(),
        )

    def mark_completed(self, job_id: str, result_path: str) -> Optional[JobRecord]:
        current = self.get(job_id)
        return self.transition(
            job_id,
            JobStatus.RUNNING,
            JobStatus.COMPLETED,
            result_path=result_path,
            completed_at=_not_before(current.started_at if current else None),
        )

    def mark_failed(self, job_id: str, error: OrchestratorError) -> Optional[JobRecord]:
        current = self.get(job_id)
        return self.transition(
            job_id,
            JobStatus.RUNNING,
            JobStatus.FAILED,
            error=str(error) or error.kind,
            error_kind=error.kind,
            completed_at=_not_before(current.started_at if current else None),
        )


def _not_before(floor):
    now = utcnow()
    if floor is not None and now < floor:
        return floor
    return now
