# =============================================================================
# API Dependencies — Service Resolution from app.state
# =============================================================================
#
# The coordinator (and everything it owns) is built once in the app's
# lifespan and stored on app.state. Route handlers receive it through
# Depends(get_coordinator) rather than importing a module-level instance,
# so tests inject a fake coordinator with create_app(coordinator=...).
# =============================================================================

from __future__ import annotations

from fastapi import HTTPException, Request

from finassist.agents.coordinator import WorkflowCoordinator


def get_coordinator(request: Request) -> WorkflowCoordinator:
    """
    FastAPI dependency returning the application's coordinator.

    Raises:
        HTTPException 503: If startup did not complete (no coordinator).
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=503,
            detail="Assistant not initialised. Check startup logs.",
        )
    return coordinator
