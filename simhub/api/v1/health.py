"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

from simhub.api.v1 import simulations
from simhub.core.wire import API_VERSION

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service liveness, store sizes and solver/render slot usage."""
    orchestrator = simulations._orchestrator
    return {
        "status": "healthy" if orchestrator is not None else "starting",
        "apiVersion": API_VERSION,
        "usage": orchestrator.health() if orchestrator is not None else None,
        "pythonVersion": sys.version,
        "platform": platform.platform(),
    }
