# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API and are the
# contract with the chat client.
#
# DESIGN DECISION: Snippet text is not exposed.
# ChatResponse.sources carries only type/title/confidence — enough for the
# client to show "based on: ..." without leaking other users' content or
# full knowledge-base articles.
# =============================================================================

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class SourceRef(BaseModel):
    """One context source used for the reply."""

    type: Literal["knowledge", "memory"]
    title: str
    confidence: float = Field(description="Weighted relevance score (0-1)")


class ChatResponse(BaseModel):
    """
    Response for POST /chat and POST /chat/upload.

    `success` is False when the workflow failed critically or no answer
    could be produced; `message` is then a degraded or apology message,
    never an error trace.
    """

    success: bool
    message: str
    sources: list[SourceRef] = Field(default_factory=list)
    confidence_score: float = Field(
        default=0.0, description="Confidence in the retrieved context (0-1)",
    )
    workflow_metadata: dict[str, Any] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    """Response for GET /stats — recent workflow load and outcomes."""

    workflows: int = Field(description="Workflows in the recent window")
    success_rate: float
    avg_elapsed_ms: float
    single_pass_count: int
    in_flight: int = Field(description="Worker calls running right now")
    cache_size: int
    cache_hits: int
    cache_misses: int
    tasks: dict[str, dict[str, float]] = Field(
        default_factory=dict,
        description="Per-task-kind count, success rate and average duration",
    )


class CacheClearedResponse(BaseModel):
    """Response for DELETE /cache."""

    cleared: int
