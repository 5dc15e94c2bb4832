# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API. Internal results (Task,
# WorkflowResult, HybridContext) are dataclasses; these models are the
# public contract and are mapped from them in the route handlers.
# =============================================================================
