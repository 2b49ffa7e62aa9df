"""Aggregate all v1 API routers."""

from fastapi import APIRouter, Depends

from simhub.api.v1.health import router as health_router
from simhub.api.v1.simulations import router as simulations_router
from simhub.api.v1.solvers import router as solvers_router
from simhub.api.v1.visualizations import router as visualizations_router
from simhub.auth.supabase_auth import require_user

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(solvers_router, tags=["solvers"], dependencies=[Depends(require_user)])
v1_router.include_router(simulations_router, tags=["simulations"], dependencies=[Depends(require_user)])
v1_router.include_router(visualizations_router, tags=["visualizations"], dependencies=[Depends(require_user)])
