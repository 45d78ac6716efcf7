# =============================================================================
# Services Package - Business Logic
# =============================================================================
# Core logic, separated from API handlers:
#   - ingest.py: kind dispatch, per-kind validation, two-phase write
#   - ingest_store.py: persistence protocol + SQLAlchemy implementation
#   - rate_limiter.py: fixed-window limits (in-memory or Redis)
#   - captcha.py: reCAPTCHA verification
#   - embedder.py: OpenAI-compatible embedding generation
#   - auth.py: Supabase session verification
#   - profiles.py: usernames and display names
#   - realtime.py: chat message fan-out (in-process or Redis pub/sub)
#   - chat_timeline.py: client-side room state with optimistic messages
# =============================================================================
