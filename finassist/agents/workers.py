# =============================================================================
# Capability Workers — Default Implementations of the Five Task Kinds
# =============================================================================
#
# The executor dispatches each task to the worker registered for its kind.
# A worker receives the task's payload plus a read-only snapshot of the
# results of every task completed earlier in the same workflow, and returns
# a typed outcome (or raises to fail the task).
#
#   DocumentWorker       — extract structured data from an attachment
#   AnalysisWorker       — LLM analysis of the user's financial snapshot
#   ExecutionWorker      — turn the request into financial operations
#   ValidationWorker     — check operation outcomes (CRITICAL task)
#   CommunicationWorker  — hybrid retrieval + final reply composition
#
# DESIGN DECISION: Collaborators injected, never looked up.
# Extraction, bookkeeping (OperationGateway), LLM, retrieval and cache are
# constructor arguments. The document parser and the ledger live outside
# this package; tests pass fakes or AsyncMocks.
#
# DESIGN DECISION: Dry-run without a gateway.
# With no OperationGateway configured, the execution worker parses the
# operations and returns them as "pending_confirmation" — the chat client
# shows them to the user, who confirms before anything is written.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from finassist.agents.composer import compose_reply
from finassist.agents.tasks import (
    AnalysisPayload,
    CommunicationPayload,
    DocumentPayload,
    OperationPayload,
    ValidationPayload,
)
from finassist.services.context_cache import ContextCache
from finassist.services.extractor import DocumentExtractor
from finassist.services.hybrid import HybridContext, HybridRetriever
from finassist.services.llm import LLMProvider

logger = logging.getLogger(__name__)

# "R$ 1.234,56", "50 reais", "$19.90", "50"
_AMOUNT_PATTERN = re.compile(r"(?<![\w.,])(\d{1,3}(?:[.,]\d{3})*(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)(?![\w])")

# Ledger amounts are positive magnitudes; direction lives in "type"
_ENTRY_TYPES = {"record_expense": "expense", "record_income": "income"}


# ---------------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------------


class OperationGateway(Protocol):
    async def apply(self, user_id: str, operation: PlannedOperation) -> dict[str, Any]:
        """Apply one operation to the user's ledger; raise on rejection."""
        ...


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class DocumentOutcome:
    document_type: str
    confidence: float
    transactions: list[dict[str, Any]] = field(default_factory=list)
    structured_data: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        return (
            f"Processed {self.document_type} document "
            f"(confidence {self.confidence:.0%}, "
            f"{len(self.transactions)} transactions found)"
        )


@dataclass
class AnalysisOutcome:
    focus: str
    insights: str
    model: str = ""

    def describe(self) -> str:
        return f"Analysis ({self.focus}): {self.insights}"


@dataclass
class PlannedOperation:
    operation_type: str
    data: dict[str, Any] = field(default_factory=dict)
    status: str = "pending_confirmation"  # pending_confirmation | completed | failed
    error: str | None = None


@dataclass
class OperationOutcome:
    status: str  # pending_confirmation | completed | partial | failed
    operations: list[PlannedOperation] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return sum(1 for op in self.operations if op.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for op in self.operations if op.status == "failed")

    def describe(self) -> str:
        parts = [
            f"{op.operation_type}[{op.status}]"
            + (f" amount={op.data['amount']}" if op.data.get("amount") else "")
            for op in self.operations
        ]
        return f"Operations {self.status}: {', '.join(parts) or 'none'}"


@dataclass
class ValidationOutcome:
    passed: bool
    checked: int
    warnings: list[str] = field(default_factory=list)

    def describe(self) -> str:
        if not self.warnings:
            return f"Validation passed ({self.checked} operations checked)"
        return f"Validation passed with warnings: {'; '.join(self.warnings)}"


@dataclass
class CommunicationOutcome:
    message: str
    context: HybridContext
    response_type: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    def describe(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class DocumentWorker:
    def __init__(self, extractor: DocumentExtractor | None = None) -> None:
        self._extractor = extractor

    async def run(
        self, payload: DocumentPayload, prior_results: Mapping[str, Any],
    ) -> DocumentOutcome:
        if payload.attachment is None:
            if not payload.document_analysis:
                raise ValueError("Nothing to process: no attachment or analysis")
            # Analysis produced earlier in the conversation
            return DocumentOutcome(
                document_type="previously_analysed",
                confidence=1.0,
                structured_data={"analysis": payload.document_analysis},
            )

        if self._extractor is None:
            raise ValueError("No document extractor configured")

        attachment = payload.attachment
        logger.info(
            "Extracting %s (%s, %d bytes)",
            attachment.filename, attachment.content_type, len(attachment.content),
        )
        extraction = await self._extractor.extract(attachment)
        if extraction.error:
            raise ValueError(
                f"Could not extract {attachment.filename}: {extraction.error}"
            )

        data = dict(extraction.structured_data)
        if payload.document_analysis:
            data.setdefault("analysis", payload.document_analysis)
        return DocumentOutcome(
            document_type=extraction.document_type,
            confidence=extraction.confidence,
            transactions=list(data.get("transactions") or []),
            structured_data=data,
        )


class AnalysisWorker:
    SYSTEM_PROMPT = (
        "You are a financial analyst for a personal finance app. Analyse "
        "the user's financial snapshot with a focus on {focus}.\n\n"
        "Rules:\n"
        "- Use only the figures in the snapshot\n"
        "- Report totals, trends and anomalies as short bullet points\n"
        "- If the snapshot lacks the data needed, say which data is missing"
    )

    def __init__(self, llm: LLMProvider) -> None:
        self._llm = llm

    async def run(
        self, payload: AnalysisPayload, prior_results: Mapping[str, Any],
    ) -> AnalysisOutcome:
        if not payload.financial_context:
            return AnalysisOutcome(
                focus=payload.focus,
                insights="No financial data available for analysis.",
            )

        snapshot = json.dumps(payload.financial_context, ensure_ascii=False, default=str)
        response = await self._llm.complete(
            messages=[{
                "role": "user",
                "content": (
                    f"Request: {payload.user_message}\n\n"
                    f"Financial snapshot:\n{snapshot[:4000]}"
                ),
            }],
            system=self.SYSTEM_PROMPT.format(focus=payload.focus),
        )
        logger.info(
            "Analysis complete: focus=%s, %d output tokens",
            payload.focus, response.output_tokens,
        )
        return AnalysisOutcome(
            focus=payload.focus,
            insights=response.content.strip(),
            model=response.model,
        )


class ExecutionWorker:
    def __init__(self, gateway: OperationGateway | None = None) -> None:
        self._gateway = gateway

    async def run(
        self, payload: OperationPayload, prior_results: Mapping[str, Any],
    ) -> OperationOutcome:
        operations = _plan_operations(payload, prior_results)

        if self._gateway is None:
            logger.info(
                "No operation gateway: %d operations pending confirmation",
                len(operations),
            )
            return OperationOutcome(status="pending_confirmation", operations=operations)

        for op in operations:
            try:
                op.data.update(await self._gateway.apply(payload.user_id, op) or {})
                op.status = "completed"
            except Exception as e:
                logger.warning("Operation %s rejected: %s", op.operation_type, e)
                op.status = "failed"
                op.error = str(e)

        outcome = OperationOutcome(status="completed", operations=operations)
        if outcome.failed and outcome.completed:
            outcome.status = "partial"
        elif outcome.failed:
            outcome.status = "failed"
        return outcome


class ValidationWorker:
    async def run(
        self, payload: ValidationPayload, prior_results: Mapping[str, Any],
    ) -> ValidationOutcome:
        """
        Check the outcomes of the workflow's financial operations.

        Raises:
            ValueError: If an operation result is missing or every
                operation was rejected. The validation task is critical,
                so this aborts the workflow.
        """
        warnings: list[str] = []
        checked = 0

        for task_id in payload.operation_task_ids:
            outcome = prior_results.get(task_id)
            if not isinstance(outcome, OperationOutcome):
                raise ValueError(f"No operation result for {task_id}")
            if outcome.operations and outcome.failed == len(outcome.operations):
                errors = "; ".join(op.error or "rejected" for op in outcome.operations)
                raise ValueError(f"All operations failed: {errors}")

            for op in outcome.operations:
                checked += 1
                if op.status == "failed":
                    warnings.append(f"{op.operation_type} failed: {op.error}")
                elif op.operation_type in _ENTRY_TYPES or "type" in op.data:
                    amount = op.data.get("amount")
                    if amount is None:
                        warnings.append(f"{op.operation_type}: amount not found")
                    elif amount <= 0:
                        warnings.append(f"{op.operation_type}: amount must be positive")

        return ValidationOutcome(passed=True, checked=checked, warnings=warnings)


class CommunicationWorker:
    def __init__(
        self,
        llm: LLMProvider,
        retriever: HybridRetriever,
        cache: ContextCache,
    ) -> None:
        self._llm = llm
        self._retriever = retriever
        self._cache = cache

    async def run(
        self, payload: CommunicationPayload, prior_results: Mapping[str, Any],
    ) -> CommunicationOutcome:
        context = await self._cache.get_or_compute(
            payload.user_id,
            payload.original_message,
            lambda: self._retriever.retrieve(payload.original_message, payload.user_id),
        )
        reply = await compose_reply(
            self._llm,
            message=payload.original_message,
            response_type=payload.response_type,
            context=context,
            prior_results=prior_results,
            financial_context=payload.financial_context,
        )
        return CommunicationOutcome(
            message=reply.message,
            context=context,
            response_type=payload.response_type,
            model=reply.model,
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _plan_operations(
    payload: OperationPayload, prior_results: Mapping[str, Any],
) -> list[PlannedOperation]:
    """Operations requested by the message, plus any imported transactions."""
    documents = [r for r in prior_results.values() if isinstance(r, DocumentOutcome)]
    amount = parse_amount(payload.user_message)

    operations: list[PlannedOperation] = []
    imported = False
    for name in payload.operations or ("create_transaction",):
        if name == "import_statement" or (name == "create_transaction" and documents):
            if imported:
                continue
            imported = True
            for doc in documents:
                for transaction in doc.transactions:
                    operations.append(PlannedOperation(
                        "create_transaction", _ledger_entry(transaction),
                    ))
            continue
        data: dict[str, Any] = {"description": payload.user_message[:200]}
        if name in ("record_expense", "record_income", "create_transaction", "create_transfer"):
            data["amount"] = amount
        if name in _ENTRY_TYPES:
            data["type"] = _ENTRY_TYPES[name]
        operations.append(PlannedOperation(name, data))

    return operations


def _ledger_entry(transaction: Mapping[str, Any]) -> dict[str, Any]:
    """
    Imported statement row in ledger form.

    Statements sign amounts (expenses negative). The ledger stores a
    positive magnitude plus an explicit type, the same as typed
    record_expense / record_income operations.
    """
    entry = dict(transaction)
    amount = entry.get("amount")
    if isinstance(amount, (int, float)) and not isinstance(amount, bool):
        entry["amount"] = abs(float(amount))
        entry.setdefault("type", "expense" if amount < 0 else "income")
    return entry


def parse_amount(text: str) -> float | None:
    """
    First monetary amount in a message.

    Examples:
        "Gastei 50 reais"         → 50.0
        "paguei R$ 1.234,56"      → 1234.56
        "spent $19.90 on lunch"   → 19.9
    """
    match = _AMOUNT_PATTERN.search(text)
    if not match:
        return None
    raw = match.group(1)
    # The last separator followed by 1-2 digits is the decimal mark
    decimal = re.search(r"[.,](\d{1,2})$", raw)
    if decimal:
        whole = re.sub(r"[.,]", "", raw[: decimal.start()])
        return float(f"{whole}.{decimal.group(1)}")
    return float(re.sub(r"[.,]", "", raw))
