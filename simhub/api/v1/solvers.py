"""Solvers API: list registered solver adapters."""

from fastapi import APIRouter

from simhub.solvers.registry import registry

router = APIRouter()


@router.get("/solvers")
async def list_solvers():
    """List the simulation types this service accepts."""
    specs = registry.list_solvers()
    return {
        "solvers": [
            {
                "type": s.job_type,
                "name": s.name,
                "engine": s.engine,
                "uploadSuffix": s.upload_suffix,
                "maxUploadBytes": s.max_upload_bytes,
                "description": s.description,
                "version": s.version,
            }
            for s in specs
        ],
        "count": len(specs),
    }
