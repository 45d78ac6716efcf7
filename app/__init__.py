# =============================================================================
# Chuef Ingest Service
# =============================================================================
# Backend for a public chatroom, a contact form, and an OAuth-backed user
# dashboard. Every piece of user-submitted text goes through one universal
# ingest endpoint that stores the raw text, its embedding vector, and a
# domain record (chat message or contact submission).
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (ingest, profile, chat feed)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Business logic (ingest handlers, rate limiting,
#                        captcha, embeddings, sessions, profiles, realtime)
# =============================================================================
