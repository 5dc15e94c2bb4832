# =============================================================================
# Application Factory — FastAPI App & Service Wiring
# =============================================================================
#
# build_coordinator() constructs every service exactly once, from settings,
# and hands each component its collaborators explicitly:
#
#   ChromaSnippetStore ×2 ──▶ Knowledge / Memory search adapters
#                                      │
#   OpenAIEmbedder ────────────────────┤
#                                      ▼
#                    HybridRetrievalCombiner + HybridRetriever ◀── ContextCache
#                                      │
#   LLM provider ──▶ workers ──▶ WorkflowExecutor ◀── RecentMetrics
#                                      │
#   WorkflowPlanner ──────────▶ WorkflowCoordinator ──▶ app.state.coordinator
#
# DESIGN DECISION: No module-level service singletons.
# The coordinator lives on app.state and routes resolve it via Depends.
# create_app(coordinator=...) skips the wiring entirely, which is how the
# API tests run without API keys, ChromaDB or network.
#
# USAGE:
#   uvicorn finassist.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from finassist.agents.coordinator import WorkflowCoordinator
from finassist.agents.executor import WorkflowExecutor
from finassist.agents.planner import WorkflowPlanner
from finassist.agents.tasks import TaskKind
from finassist.agents.workers import (
    AnalysisWorker,
    CommunicationWorker,
    DocumentWorker,
    ExecutionWorker,
    ValidationWorker,
)
from finassist.api import admin, chat
from finassist.config import Settings, settings
from finassist.services.context_cache import ContextCache
from finassist.services.embedder import OpenAIEmbedder
from finassist.services.extractor import LLMDocumentExtractor
from finassist.services.hybrid import HybridRetrievalCombiner, HybridRetriever
from finassist.services.knowledge import KnowledgeSearchAdapter
from finassist.services.llm import create_llm_provider
from finassist.services.memory import MemorySearchAdapter
from finassist.services.telemetry import RecentMetrics
from finassist.services.vectorstore import ChromaSnippetStore

logger = logging.getLogger(__name__)


def build_coordinator(config: Settings) -> WorkflowCoordinator:
    """
    Construct the full service graph from configuration.

    Raises:
        ValueError: If the LLM provider is unknown or has no API key.
    """
    llm = create_llm_provider(config)
    embedder = OpenAIEmbedder(
        api_key=config.openai_api_key or config.llm_api_key,
        model=config.embedding_model,
        dimensions=config.embedding_dimensions,
        base_url=config.embedding_base_url,
    )

    knowledge = KnowledgeSearchAdapter(
        ChromaSnippetStore(config.knowledge_collection, chroma_url=config.chroma_url),
        embedder,
        min_similarity=config.retrieval_similarity_threshold,
    )
    memory = MemorySearchAdapter(
        ChromaSnippetStore(config.memory_collection, chroma_url=config.chroma_url),
        embedder,
    )
    retriever = HybridRetriever(
        knowledge=knowledge,
        memory=memory,
        combiner=HybridRetrievalCombiner(
            knowledge_weight=config.knowledge_weight,
            memory_weight=config.memory_weight,
            min_similarity=config.retrieval_similarity_threshold,
            max_sources=config.retrieval_max_sources,
            diversity_saturation=config.diversity_saturation,
            diversity_bonus=config.diversity_bonus,
        ),
        knowledge_max_results=config.knowledge_max_results,
        memory_max_results=config.memory_max_results,
        memory_threshold=config.retrieval_similarity_threshold,
    )
    cache = ContextCache(
        ttl_seconds=config.context_cache_ttl_seconds,
        max_entries=config.context_cache_max_entries,
        key_length=config.context_cache_key_length,
    )
    telemetry = RecentMetrics(window_size=config.telemetry_window_size)

    executor = WorkflowExecutor(
        runners={
            TaskKind.DOCUMENT_PROCESSING: DocumentWorker(LLMDocumentExtractor(llm)),
            TaskKind.DATA_ANALYSIS: AnalysisWorker(llm),
            TaskKind.FINANCIAL_OPERATION: ExecutionWorker(),
            TaskKind.VALIDATION: ValidationWorker(),
            TaskKind.COMMUNICATION: CommunicationWorker(llm, retriever, cache),
        },
        telemetry=telemetry,
        max_concurrency=config.workflow_max_concurrency,
        task_timeout=config.task_timeout_seconds,
    )

    return WorkflowCoordinator(
        planner=WorkflowPlanner(),
        executor=executor,
        retriever=retriever,
        cache=cache,
        llm=llm,
        memory=memory,
        telemetry=telemetry,
        min_memory_confidence=config.memory_store_min_confidence,
        history_size=config.telemetry_window_size,
    )


def create_app(
    coordinator: WorkflowCoordinator | None = None,
    config: Settings | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        coordinator: Pre-built coordinator (tests). When omitted, one is
            built from `config` during startup.
        config: Settings to build from; defaults to the environment.
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=getattr(logging, config.log_level.upper(), logging.INFO),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
        if getattr(app.state, "coordinator", None) is None:
            app.state.coordinator = build_coordinator(config)
        logger.info(
            "%s %s started (llm=%s/%s)",
            config.app_name, config.app_version,
            config.llm_provider, config.llm_model,
        )
        yield
        await app.state.coordinator.cache.clear()
        logger.info("%s shut down", config.app_name)

    app = FastAPI(
        title=config.app_name,
        description=(
            "Personal finance assistant: plans and executes multi-step "
            "workflows per chat message, with answers grounded in a finance "
            "knowledge base and the user's own history."
        ),
        version=config.app_version,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    app.include_router(chat.router)
    app.include_router(admin.router)
    return app


app = create_app()
