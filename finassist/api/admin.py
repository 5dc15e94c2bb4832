# =============================================================================
# Admin API — Health, Load Statistics & Cache Management
# =============================================================================
#
#   GET    /health  — liveness, no dependencies touched
#   GET    /stats   — recent workflow outcomes, in-flight tasks, cache figures
#   DELETE /cache   — drop every cached retrieval context
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from finassist.agents.coordinator import WorkflowCoordinator
from finassist.api.deps import get_coordinator
from finassist.config import settings
from finassist.models.responses import (
    CacheClearedResponse,
    HealthResponse,
    StatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Workflow and cache statistics",
)
async def stats(
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> StatsResponse:
    return StatsResponse(**coordinator.stats())


@router.delete(
    "/cache",
    response_model=CacheClearedResponse,
    summary="Clear the retrieval context cache",
)
async def clear_cache(
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> CacheClearedResponse:
    cleared = await coordinator.cache.clear()
    logger.info("Context cache cleared via API: %d entries", cleared)
    return CacheClearedResponse(cleared=cleared)
