# =============================================================================
# Services Package — Retrieval, Models & Infrastructure Adapters
# =============================================================================
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - embedder.py: OpenAI-compatible embedding generation
#   - vectorstore.py: Snippet store protocol + ChromaDB backend
#   - knowledge.py / memory.py: similarity search over the knowledge base
#     and the per-user memory store
#   - hybrid.py: weighted merge of both sources into one ranked context
#   - context_cache.py: TTL + FIFO cache of retrieval contexts
#   - extractor.py: structured data from uploaded text documents
#   - telemetry.py: per-task usage metrics (bounded in-process window)
# =============================================================================
