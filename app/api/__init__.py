# =============================================================================
# API Package - FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - ingest.py: universal ingest endpoint (chat messages, contact form)
#   - profile.py: one-time username assignment and profile lookup
#   - chat.py: room history and realtime SSE stream
#   - deps.py: shared dependencies (session user, client id, stores)
#   - audit.py: request logging middleware
# =============================================================================
