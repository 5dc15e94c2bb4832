# =============================================================================
# Agents Package — Workflow Planning & Execution
# =============================================================================
#   - tasks.py: Task graph data model (kinds, priorities, payloads, results)
#   - planner.py: keyword-driven intent analysis → task graph
#   - executor.py: dependency-ordered, concurrency-capped task execution
#   - workers.py: the five capability workers the executor dispatches to
#   - composer.py: final reply prompts and deterministic phrasing
#   - coordinator.py: LangGraph plan → execute → respond façade
# =============================================================================
