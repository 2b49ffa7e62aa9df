"""FastAPI error handler registration for orchestrator errors."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from simhub.core.errors import NotReadyError, OrchestratorError

logger = logging.getLogger(__name__)


async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    headers = None
    if isinstance(exc, NotReadyError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    """Map the orchestrator error taxonomy onto HTTP responses."""
    app.add_exception_handler(OrchestratorError, orchestrator_error_handler)
