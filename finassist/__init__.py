# =============================================================================
# Personal Finance Assistant — Orchestration & Context Retrieval Engine
# =============================================================================
# Turns one chat message into a small graph of tasks (document processing,
# analysis, financial operations, validation, communication), runs them
# with dependency ordering and bounded concurrency, and answers with
# context drawn from a finance knowledge base plus the user's own history.
#
# Package structure:
#   finassist/
#   ├── api/          → FastAPI route handlers (chat, health/stats/cache)
#   ├── agents/       → Task model, planner, executor, workers, coordinator
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → LLM, embeddings, vector store, hybrid retrieval,
#                       context cache, telemetry
# =============================================================================
