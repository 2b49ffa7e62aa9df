"""Simulation API: submit jobs, poll status, download results, delete."""

from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse

from simhub.core.orchestrator import Orchestrator
from simhub.core.wire import WireModel
from simhub.jobs.models import JobRecord
from simhub.visualization.models import SessionRecord

router = APIRouter()

# Set by main.py during lifespan
_orchestrator: Optional[Orchestrator] = None

_CHUNK_BYTES = 1024 * 1024


def set_orchestrator(orchestrator: Optional[Orchestrator]):
    global _orchestrator
    _orchestrator = orchestrator


def _get() -> Orchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return _orchestrator


class CreateSimulationRequest(WireModel):
    name: Optional[str] = None
    # Kept as a plain string so an unknown type is reported as a 400, not a 422.
    type: Optional[str] = None
    config_path: Optional[str] = None


@router.post("/simulations", response_model=JobRecord, status_code=201)
async def create_simulation(request: CreateSimulationRequest):
    """Create a job from a case in the case library. Returns immediately in ``pending``."""
    return await _get().create_job(request.name, request.type, request.config_path)


@router.post("/simulations/upload", response_model=JobRecord, status_code=201)
async def upload_simulation(
    name: str = Form(...),
    type: str = Form(...),
    file: UploadFile = File(...),
):
    """Create a job from an uploaded input (.tar.gz case for cfd, .inp deck for fea)."""

    async def chunks() -> AsyncIterator[bytes]:
        while True:
            chunk = await file.read(_CHUNK_BYTES)
            if not chunk:
                break
            yield chunk

    return await _get().create_job_from_upload(name, type, file.filename, chunks())


@router.get("/simulations", response_model=List[JobRecord])
async def list_simulations():
    """All jobs, newest first."""
    return _get().list_jobs()


@router.get("/simulations/{simulation_id}", response_model=JobRecord)
async def get_simulation(simulation_id: str):
    return _get().get_job(simulation_id)


@router.delete("/simulations/{simulation_id}", status_code=204)
async def delete_simulation(simulation_id: str):
    """Stop the solver if it is running and remove the job."""
    await _get().delete_job(simulation_id)
    return Response(status_code=204)


@router.get("/simulations/{simulation_id}/results")
async def download_results(simulation_id: str):
    """Zip of the result artifact set. 409 until the job has completed."""
    archive_path = await _get().result_archive(simulation_id)
    return FileResponse(
        archive_path,
        media_type="application/zip",
        filename=f"results-{simulation_id}.zip",
    )


@router.get("/simulations/{simulation_id}/visualizations", response_model=List[SessionRecord])
async def list_simulation_visualizations(simulation_id: str):
    return _get().list_sessions(simulation_id)
