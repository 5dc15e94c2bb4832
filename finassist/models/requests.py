# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# POST /chat/upload is multipart and takes Form/File fields directly, so it
# has no body model here.
# =============================================================================

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /chat — one message to the finance assistant.

    Example:
        {
            "message": "Gastei 50 reais no supermercado",
            "user_id": "user-123",
            "financial_context": {"balance": 1200.0}
        }
    """

    # Empty messages are allowed when a document analysis accompanies them
    message: str = Field(
        ...,
        max_length=4000,
        description="The user's chat message",
        examples=["Analyse my expenses this month"],
    )

    user_id: str = Field(
        default="anonymous",
        min_length=1,
        max_length=200,
        description="User whose memory is searched and updated",
    )

    # Snapshot sent by the client: accounts, recent transactions, budgets.
    # DESIGN DECISION: Free-form dict. The assistant passes it to the LLM
    # as JSON and never interprets individual fields.
    financial_context: dict[str, Any] = Field(
        default_factory=dict,
        description="The user's current financial snapshot",
    )

    document_analysis: str | None = Field(
        default=None,
        max_length=20000,
        description="Analysis of a document uploaded earlier in the conversation",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "message": "Gastei 50 reais no supermercado",
                    "user_id": "user-123",
                    "financial_context": {},
                },
                {
                    "message": "How can I build an emergency fund?",
                    "user_id": "user-123",
                },
            ]
        }
    )
