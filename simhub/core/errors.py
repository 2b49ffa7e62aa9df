"""Error taxonomy for the orchestrator.

Synchronous errors (validation, not-found, not-ready, queue-full) are raised
from API calls. The asynchronous kinds are never raised to callers; their
``kind`` is recorded on the failed record next to the message.
"""


class OrchestratorError(Exception):
    """Base class for every error the orchestrator raises or records."""

    status_code = 500
    kind = "internal"


class ValidationError(OrchestratorError):
    """Malformed create request; no record is created."""

    status_code = 400
    kind = "validation"


class NotFoundError(OrchestratorError):
    status_code = 404
    kind = "not_found"


class NotReadyError(OrchestratorError):
    """The requested artifact exists but is not available yet; retry later."""

    status_code = 409
    kind = "not_ready"

    def __init__(self, message: str, retry_after: int = 3):
        super().__init__(message)
        self.retry_after = retry_after


class TerminalStateError(OrchestratorError):
    """The record failed; what was asked for will never become available."""

    status_code = 409
    kind = "failed"


class ResourceExhaustedError(OrchestratorError):
    """The wait queue for a resource kind is at its configured depth."""

    status_code = 429
    kind = "resource_exhausted"


class ExecutionError(OrchestratorError):
    kind = "execution"


class ProvisioningError(OrchestratorError):
    kind = "provisioning"


class DeadlineExceededError(OrchestratorError):
    """A run or provisioning attempt exceeded its maximum duration."""

    kind = "timeout"
