# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# DESIGN DECISION: Every tuning constant of the orchestration and retrieval
# engine lives here, not in the modules that use it. The source weights,
# similarity threshold, cache TTL/size and concurrency cap have no documented
# derivation — they are product-level knobs, so they must be overridable via
# environment variables without code changes.
#
# HOW IT WORKS:
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `KNOWLEDGE_WEIGHT=0.8`)
#   2. Values from the .env file
#   3. Default values defined below
#
# Only the application factory (finassist.main) reads these settings. Every
# component receives its tunables as constructor arguments, so tests build
# components with explicit values and never touch global state.
#
# USAGE:
#   from finassist.config import settings
#   print(settings.workflow_max_concurrency)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for local development.
    In production, override via environment variables or a .env file.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Personal Finance Assistant"
    app_version: str = "0.1.0"
    debug: bool = True
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # ANTHROPIC_API_KEY: For Claude API (analysis + response composition)
    # OPENAI_API_KEY: For embeddings (knowledge + memory similarity search)
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (DeepSeek, Qwen, ...)
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1024

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_base_url: str | None = None

    # -------------------------------------------------------------------------
    # Vector Store — ChromaDB
    # -------------------------------------------------------------------------
    # Two collections: the trained knowledge base (shared by all users) and
    # the per-user memory store (filtered by user_id metadata).
    # chroma_url unset → in-process client (local development, tests).
    # -------------------------------------------------------------------------
    chroma_url: str | None = None
    knowledge_collection: str = "finance_knowledge"
    memory_collection: str = "user_memory"

    # -------------------------------------------------------------------------
    # Hybrid Retrieval
    # -------------------------------------------------------------------------
    # knowledge_weight / memory_weight: multiplier applied to each source's
    #   raw similarity before the two ranked lists are merged.
    # retrieval_similarity_threshold: snippets below this raw similarity are
    #   discarded by each search adapter before combination.
    # retrieval_max_sources: size cap of the merged, ranked context.
    # diversity_*: confidence bonus = min(count / saturation, 1) * bonus.
    # -------------------------------------------------------------------------
    knowledge_weight: float = 0.7
    memory_weight: float = 0.3
    retrieval_similarity_threshold: float = 0.6
    retrieval_max_sources: int = 8
    knowledge_max_results: int = 5
    memory_max_results: int = 5
    diversity_saturation: int = 5
    diversity_bonus: float = 0.1

    # -------------------------------------------------------------------------
    # Context Cache
    # -------------------------------------------------------------------------
    # Memoises hybrid retrieval per (user, normalised query).
    # FIFO eviction once max_entries is exceeded; entries older than the TTL
    # are recomputed on access.
    # -------------------------------------------------------------------------
    context_cache_ttl_seconds: float = 300.0
    context_cache_max_entries: int = 50
    context_cache_key_length: int = 100

    # -------------------------------------------------------------------------
    # Workflow Execution
    # -------------------------------------------------------------------------
    # workflow_max_concurrency: max tasks of one workflow running at once.
    # task_timeout_seconds: per-task budget; a timeout is a task failure.
    # -------------------------------------------------------------------------
    workflow_max_concurrency: int = 5
    task_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Memory & Telemetry
    # -------------------------------------------------------------------------
    # memory_store_min_confidence: only replies above this confidence are
    #   persisted to the user's memory store.
    # telemetry_window_size: number of recent task/workflow metrics kept
    #   in process for the /stats endpoint.
    # -------------------------------------------------------------------------
    memory_store_min_confidence: float = 0.7
    telemetry_window_size: int = 200

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, build `Settings(...)` directly with explicit values instead.
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = get_settings()
