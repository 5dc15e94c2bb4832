# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - chat.py: POST /chat and POST /chat/upload
#   - admin.py: GET /health, GET /stats, DELETE /cache
#   - deps.py: dependencies resolving the coordinator from app.state
# =============================================================================
