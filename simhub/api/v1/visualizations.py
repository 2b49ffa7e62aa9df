"""Visualization API: request a render session and fetch its stream endpoint."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Response

from simhub.core.orchestrator import Orchestrator
from simhub.core.wire import WireModel
from simhub.visualization.models import SessionRecord

router = APIRouter()

# Set by main.py during lifespan (same pattern as simulations.py)
_orchestrator: Optional[Orchestrator] = None


def set_orchestrator(orchestrator: Optional[Orchestrator]):
    global _orchestrator
    _orchestrator = orchestrator


def _get() -> Orchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return _orchestrator


class CreateVisualizationRequest(WireModel):
    simulation_id: Optional[str] = None
    result_path: Optional[str] = None


class StreamEndpointResponse(WireModel):
    ws_url: str


@router.post("/visualizations", response_model=SessionRecord, status_code=201)
async def create_visualization(request: CreateVisualizationRequest):
    """Create a session; the render worker boots in the background."""
    return await _get().create_session(request.simulation_id, request.result_path)


@router.get("/visualizations/{session_id}", response_model=SessionRecord)
async def get_visualization(session_id: str):
    return _get().get_session(session_id)


@router.get("/visualizations/{session_id}/ws-url", response_model=StreamEndpointResponse)
async def get_stream_endpoint(session_id: str):
    """Stream endpoint of a ready session. 409 with Retry-After until then."""
    return StreamEndpointResponse(ws_url=_get().stream_endpoint(session_id))


@router.delete("/visualizations/{session_id}", status_code=204)
async def delete_visualization(session_id: str):
    await _get().delete_session(session_id)
    return Response(status_code=204)
