# =============================================================================
# Document Extractor — Structured Data from Uploaded Statements
# =============================================================================
#
# Turns an uploaded text document (CSV/OFX export, plain-text statement,
# JSON) into structured data the execution worker can import:
#
#   {"document_type": "bank_statement",
#    "transactions": [{"date": "2024-05-02", "description": "...",
#                      "amount": -50.0}, ...]}
#
# DESIGN DECISION: LLM extraction with a strict JSON contract.
# Bank exports vary wildly between institutions; a single prompt handles
# them without per-bank parsers. Temperature 0 and a JSON-only system
# prompt keep the output parseable; anything unparseable becomes an
# ExtractionResult with `error` set, which fails the document task.
#
# DESIGN DECISION: Text formats only.
# Binary formats (PDF, images) need OCR/layout parsing, which runs outside
# this service; they are rejected with an explicit error.
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from finassist.services.llm import LLMProvider

if TYPE_CHECKING:
    from finassist.agents.tasks import Attachment

logger = logging.getLogger(__name__)

TEXT_CONTENT_TYPES = (
    "text/",
    "application/json",
    "application/csv",
    "application/x-ofx",
    "application/vnd.ms-excel",  # browsers send this for .csv
)

_MAX_DOCUMENT_CHARS = 12000

_EXTRACTION_SYSTEM = (
    "You extract financial data from documents. Respond with ONLY a JSON "
    "object, no prose, of the form:\n"
    '{"document_type": "bank_statement" | "credit_card_statement" | '
    '"invoice" | "receipt" | "other",\n'
    ' "confidence": 0.0-1.0,\n'
    ' "transactions": [{"date": "YYYY-MM-DD", "description": str, '
    '"amount": number}]}\n'
    "Expenses are negative amounts, income positive. Omit rows you cannot "
    "read rather than guessing."
)


@dataclass
class ExtractionResult:
    document_type: str
    confidence: float
    structured_data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class DocumentExtractor(Protocol):
    async def extract(self, attachment: Attachment) -> ExtractionResult:
        ...


class LLMDocumentExtractor:
    def __init__(self, llm: LLMProvider, max_tokens: int = 2048) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    async def extract(self, attachment: Attachment) -> ExtractionResult:
        if not attachment.content_type.startswith(TEXT_CONTENT_TYPES):
            return ExtractionResult(
                document_type="unknown",
                confidence=0.0,
                error=f"Unsupported content type: {attachment.content_type}",
            )

        text = attachment.content.decode("utf-8", errors="replace").strip()
        if not text:
            return ExtractionResult(
                document_type="unknown", confidence=0.0, error="Document is empty",
            )
        if len(text) > _MAX_DOCUMENT_CHARS:
            logger.info(
                "Truncating %s from %d to %d characters",
                attachment.filename, len(text), _MAX_DOCUMENT_CHARS,
            )
            text = text[:_MAX_DOCUMENT_CHARS]

        response = await self._llm.complete(
            messages=[{
                "role": "user",
                "content": f"Document '{attachment.filename}':\n\n{text}",
            }],
            system=_EXTRACTION_SYSTEM,
            temperature=0.0,
            max_tokens=self._max_tokens,
        )

        try:
            data = json.loads(_strip_code_fence(response.content))
        except json.JSONDecodeError as e:
            logger.warning("Unparseable extraction for %s: %s", attachment.filename, e)
            return ExtractionResult(
                document_type="unknown",
                confidence=0.0,
                error=f"Extraction returned invalid JSON: {e}",
            )
        if not isinstance(data, dict):
            return ExtractionResult(
                document_type="unknown",
                confidence=0.0,
                error="Extraction did not return a JSON object",
            )

        transactions = [t for t in data.get("transactions") or [] if isinstance(t, dict)]
        logger.info(
            "Extracted %s: type=%s, %d transactions",
            attachment.filename, data.get("document_type"), len(transactions),
        )
        return ExtractionResult(
            document_type=str(data.get("document_type") or "other"),
            confidence=_as_confidence(data.get("confidence")),
            structured_data={**data, "transactions": transactions},
        )


def _strip_code_fence(content: str) -> str:
    """Models sometimes wrap JSON in ```json ... ``` despite instructions."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _as_confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.5
