# =============================================================================
# Response Composer — Final Chat Reply Generation
# =============================================================================
#
# Takes the user's message, the results of the workflow's earlier tasks and
# the hybrid retrieval context, and asks the LLM for the final reply with a
# response-type-specific system prompt.
#
# RESPONSE TYPES:
#   action_result   — confirm what was recorded/imported, flag problems
#   analysis_report — explain the analysis with concrete figures
#   guidance        — answer a question using knowledge + user history
#
# DESIGN DECISION: Context formatted with numbered references.
# Snippets are presented as [1], [2], etc. so the LLM can cite them, and
# the chat UI can show which knowledge/memory sources were used.
#
# DESIGN DECISION: Reproducible phrasing.
# The reply opens with a short template phrase. Instead of random choice,
# select_variant(seed, templates) is a pure function and the seed is a
# CRC32 of the user's message: the same message always gets the same
# opening, so tests (and users retrying) see stable output.
# =============================================================================

from __future__ import annotations

import json
import logging
import zlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from finassist.services.hybrid import HybridContext, RankedSnippet
from finassist.services.llm import LLMProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ComposedReply:
    message: str
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Response-Type System Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPTS: dict[str, str] = {
    "action_result": (
        "You are a personal finance assistant. The user asked you to record "
        "or change financial data, and the operations below were executed "
        "(or prepared for confirmation).\n\n"
        "Rules:\n"
        "- State clearly what was done, with amounts and dates\n"
        "- If anything failed or needs confirmation, say so plainly\n"
        "- Never claim an operation succeeded unless the results say so\n"
        "- Cite knowledge sources as [1], [2] when you use them\n"
        "- Reply in the user's language, in at most two short paragraphs"
    ),

    "analysis_report": (
        "You are a personal finance assistant. Explain the analysis of the "
        "user's finances given below.\n\n"
        "Rules:\n"
        "- Lead with the most important finding\n"
        "- Use the exact figures from the results — never invent numbers\n"
        "- Add at most three practical suggestions\n"
        "- Cite knowledge sources as [1], [2] when you use them\n"
        "- Reply in the user's language"
    ),

    "guidance": (
        "You are a personal finance assistant. Answer the user's question "
        "using the provided context.\n\n"
        "Rules:\n"
        "- Prefer the numbered context over general knowledge\n"
        "- Personalise with the user's history when it is relevant\n"
        "- If the context does not cover the question, say so and give "
        "general, cautious guidance\n"
        "- Cite sources as [1], [2]\n"
        "- Reply in the user's language, concisely"
    ),
}

_DEFAULT_SYSTEM = SYSTEM_PROMPTS["guidance"]

OPENINGS: dict[str, tuple[str, ...]] = {
    "action_result": (
        "Done!",
        "All set.",
        "Here is what I did.",
    ),
    "action_pending": (
        "Here is what I prepared for you to confirm.",
        "Nothing is saved yet. Please review:",
        "Ready to record once you confirm.",
    ),
    "analysis_report": (
        "I analysed your finances and found a few important points.",
        "Here is what your numbers show.",
        "Your financial data reveals some interesting patterns.",
    ),
    "guidance": (
        "",
        "Good question.",
        "Here is what I can tell you.",
    ),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def select_variant(seed: int, templates: Sequence[str]) -> str:
    """
    Pick one template deterministically from `seed`.

    Raises:
        ValueError: If `templates` is empty.
    """
    if not templates:
        raise ValueError("select_variant needs at least one template")
    return templates[seed % len(templates)]


def variant_seed(text: str) -> int:
    """Stable, process-independent seed for a message (unlike hash())."""
    return zlib.crc32(text.encode("utf-8"))


async def compose_reply(
    llm: LLMProvider,
    message: str,
    response_type: str,
    context: HybridContext,
    prior_results: Mapping[str, Any] | None = None,
    financial_context: Mapping[str, Any] | None = None,
) -> ComposedReply:
    """
    Generate the final reply for the user.

    Args:
        llm: LLM provider used for generation.
        message: The user's original message.
        response_type: "action_result", "analysis_report" or "guidance".
        context: Ranked knowledge + memory snippets.
        prior_results: Results of earlier workflow tasks, keyed by task id.
        financial_context: The user's financial snapshot sent by the client.
    """
    system_prompt = SYSTEM_PROMPTS.get(response_type, _DEFAULT_SYSTEM)

    sections = [f"User message: {message}"]
    if prior_results:
        sections.append(f"Workflow results:\n{_format_results(prior_results)}")
    if financial_context:
        sections.append(
            "Financial snapshot:\n" + _truncate(
                json.dumps(financial_context, ensure_ascii=False, default=str),
                2000,
            )
        )
    if context.sources:
        sections.append(
            f"Context ({context.summary}):\n\n{format_context(context.sources)}"
        )
    else:
        sections.append(f"Context: {context.summary}")

    logger.info(
        "Composing reply: response_type=%s, sources=%d, prior_results=%d",
        response_type, len(context.sources), len(prior_results or {}),
    )

    response = await llm.complete(
        messages=[{"role": "user", "content": "\n\n".join(sections)}],
        system=system_prompt,
    )

    opening = select_variant(
        variant_seed(message), _opening_templates(response_type, prior_results),
    )
    text = response.content.strip()
    if opening and not text.startswith(opening):
        text = f"{opening} {text}" if text else opening

    return ComposedReply(
        message=text,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def format_context(sources: Sequence[RankedSnippet]) -> str:
    """
    Format ranked snippets as numbered context for the LLM.

    Example output:
        [1] (knowledge: Emergency funds):
        Keep three to six months of expenses in a liquid account...

        ---

        [2] (your history):
        Q: How much did I spend on groceries in May? ...
    """
    sections = []
    for i, snippet in enumerate(sources, 1):
        if snippet.source == "memory":
            label = "your history"
        elif snippet.title:
            label = f"knowledge: {snippet.title}"
        else:
            label = "knowledge"
        sections.append(f"[{i}] ({label}):\n{_truncate(snippet.content, 500)}")
    return "\n\n---\n\n".join(sections)


def _opening_templates(
    response_type: str, prior_results: Mapping[str, Any] | None,
) -> Sequence[str]:
    """
    Openings for the reply. Action replies only claim success when at
    least one operation outcome reports it; dry-run outcomes get the
    confirmation openings and fully failed ones get no opening.
    """
    if response_type != "action_result":
        return OPENINGS.get(response_type, OPENINGS["guidance"])

    statuses = {
        getattr(result, "status", None) for result in (prior_results or {}).values()
    }
    statuses.discard(None)
    if not statuses or statuses & {"completed", "partial"}:
        return OPENINGS["action_result"]
    if "pending_confirmation" in statuses:
        return OPENINGS["action_pending"]
    return ("",)


def _format_results(prior_results: Mapping[str, Any]) -> str:
    lines = []
    for task_id, result in prior_results.items():
        describe = getattr(result, "describe", None)
        text = describe() if callable(describe) else str(result)
        lines.append(f"- {task_id}: {_truncate(text, 800)}")
    return "\n".join(lines)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
