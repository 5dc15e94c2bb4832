# =============================================================================
# Chat API — Orchestrated Finance Assistant Endpoint
# =============================================================================
#
# FLOW:
#   1. Receive message + user id + financial snapshot (+ optional file)
#   2. WorkflowCoordinator.process_request() plans, executes and answers
#   3. Map the ChatReply to the response model
#
# This endpoint is thin by design: request validation and response mapping.
# The coordinator never raises, so workflow failures come back as
# 200 responses with success=False and a degraded message — only invalid
# requests produce errors (422).
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from finassist.agents.coordinator import ChatReply, WorkflowCoordinator
from finassist.agents.tasks import Attachment
from finassist.api.deps import get_coordinator
from finassist.models.requests import ChatRequest
from finassist.models.responses import ChatResponse, SourceRef

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

# Reject uploads larger than this before reading them into a worker
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


# ---------------------------------------------------------------------------
# POST /chat — Send a message to the assistant
# ---------------------------------------------------------------------------


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Send a chat message",
    description=(
        "Plans a workflow for the message (analysis, financial operations, "
        "validation, reply), executes it, and answers with context from the "
        "finance knowledge base and the user's history."
    ),
)
async def chat_endpoint(
    request: ChatRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> ChatResponse:
    logger.info(
        "Chat request: user=%s, message='%s', document_analysis=%s",
        request.user_id, request.message[:80], request.document_analysis is not None,
    )
    reply = await coordinator.process_request(
        message=request.message,
        user_id=request.user_id,
        financial_context=request.financial_context,
        document_analysis=request.document_analysis,
    )
    return _to_response(reply)


# ---------------------------------------------------------------------------
# POST /chat/upload — Message with an attached document
# ---------------------------------------------------------------------------


@router.post(
    "/chat/upload",
    response_model=ChatResponse,
    summary="Send a chat message with a document",
    description=(
        "Same as POST /chat, with a bank statement, invoice or receipt "
        "attached. The document is processed before any operations run."
    ),
)
async def chat_upload_endpoint(
    file: UploadFile = File(..., description="Statement, invoice or receipt"),
    message: str = Form(default=""),
    user_id: str = Form(default="anonymous"),
    financial_context: str = Form(default="{}", description="JSON object"),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
) -> ChatResponse:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {MAX_UPLOAD_BYTES // (1024 * 1024)} MB)",
        )

    context = _parse_context(financial_context)
    attachment = Attachment(
        filename=file.filename or "upload",
        content=content,
        content_type=file.content_type or "application/octet-stream",
    )

    logger.info(
        "Chat upload: user=%s, file=%s (%d bytes)",
        user_id, attachment.filename, len(content),
    )
    reply = await coordinator.process_request(
        message=message,
        user_id=user_id,
        financial_context=context,
        attachment=attachment,
    )
    return _to_response(reply)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _parse_context(raw: str) -> dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise HTTPException(
            status_code=422, detail=f"financial_context is not valid JSON: {e}",
        ) from e
    if not isinstance(value, dict):
        raise HTTPException(
            status_code=422, detail="financial_context must be a JSON object",
        )
    return value


def _to_response(reply: ChatReply) -> ChatResponse:
    return ChatResponse(
        success=reply.success,
        message=reply.message,
        sources=[SourceRef(**source) for source in reply.sources],
        confidence_score=reply.confidence_score,
        workflow_metadata=reply.workflow_metadata,
    )
