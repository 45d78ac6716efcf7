# =============================================================================
# API Tests - POST /api/ingest
# =============================================================================
#
# Drives the route through FastAPI's TestClient with the store and
# broadcaster dependencies overridden. Session lookup, embeddings and captcha
# verification are patched; no database or network is touched.
# =============================================================================

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_ingest_store
from app.config import settings
from app.main import app
from app.services.auth import AuthUser, resolve_user
from app.services.captcha import CaptchaResult
from app.services.ingest_store import StoredChatMessage
from app.services.rate_limiter import rate_limiter
from app.services.realtime import get_chat_broadcaster

USER = AuthUser(id="8f14e45f-ceea-467f-a0e6-2a6e2f1c9d01")
AUTH = {"Authorization": "Bearer jwt-token"}


class RecordingStore:
    """Minimal in-memory IngestStore."""

    def __init__(self):
        self.inputs: dict[str, dict] = {}
        self.domain_rows: dict[str, dict] = {}

    async def insert_input(self, *, user_id, kind, text, embedding, meta) -> str:
        input_id = str(uuid.uuid4())
        self.inputs[input_id] = {"user_id": user_id, "kind": kind, "text": text, "meta": meta}
        return input_id

    async def insert_chat_message(self, *, input_id, user_id, room, text):
        message = StoredChatMessage(
            id=str(uuid.uuid4()),
            input_id=input_id,
            user_id=user_id,
            room=room,
            text=text,
            created_at=datetime.now(UTC),
        )
        self.domain_rows[message.id] = {"room": room, "text": text}
        return message

    async def insert_contact_submission(self, *, input_id, email, message) -> str:
        submission_id = str(uuid.uuid4())
        self.domain_rows[submission_id] = {"email": email, "message": message}
        return submission_id

    async def delete_input(self, input_id: str) -> None:
        self.inputs.pop(input_id, None)

    async def last_chat_message_at(self, user_id: str):
        return None


class RecordingBroadcaster:
    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    async def publish(self, room: str, event: dict) -> None:
        self.published.append((room, event))


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def session_lookup():
    """Counts session lookups. Resolves to no user unless told otherwise."""
    with patch(
        "app.services.ingest.resolve_user", new=AsyncMock(return_value=None),
    ) as mock_resolve:
        yield mock_resolve


@pytest.fixture
def client(store, broadcaster, session_lookup):
    """TestClient with an anonymous session by default."""
    rate_limiter.reset()
    app.dependency_overrides[get_ingest_store] = lambda: store
    app.dependency_overrides[get_chat_broadcaster] = lambda: broadcaster
    with (
        patch("app.services.ingest.embed_text", return_value=[0.1] * 8),
        patch(
            "app.services.ingest.verify_recaptcha_async",
            new=AsyncMock(return_value=CaptchaResult(ok=True, score=0.9)),
        ),
    ):
        yield TestClient(app)
    app.dependency_overrides.clear()
    rate_limiter.reset()


def _contact_body(**overrides) -> dict:
    body = {
        "kind": "contact_submission",
        "text": "Do you cater weddings?",
        "email": "guest@example.com",
        "captchaToken": "captcha-token",
    }
    body.update(overrides)
    return body


class TestContactSubmission:
    """Anonymous, captcha-gated submissions."""

    def test_success(self, client, store):
        resp = client.post("/api/ingest", json=_contact_body())

        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["kind"] == "contact_submission"
        assert data["embeddingGenerated"] is True
        assert data["inputId"] in store.inputs
        assert store.domain_rows[data["domainId"]]["email"] == "guest@example.com"

    def test_surface_derived_from_headers(self, client, store):
        resp = client.post(
            "/api/ingest",
            json=_contact_body(),
            headers={"User-Agent": "Mozilla/5.0", "Referer": "https://chuef.example/contact"},
        )
        meta = store.inputs[resp.json()["inputId"]]["meta"]
        assert meta["surface"] == {
            "surface": "contact",
            "userAgent": "Mozilla/5.0",
            "referrer": "https://chuef.example/contact",
        }

    def test_missing_email(self, client, store):
        body = _contact_body()
        del body["email"]
        resp = client.post("/api/ingest", json=body)

        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "Valid email is required",
            "code": "VALIDATION_ERROR",
        }
        assert store.inputs == {}

    def test_missing_captcha(self, client):
        resp = client.post("/api/ingest", json=_contact_body(captchaToken=None))
        assert resp.status_code == 400
        assert resp.json()["code"] == "CAPTCHA_REQUIRED"

    def test_failed_captcha(self, client, store):
        with patch(
            "app.services.ingest.verify_recaptcha_async",
            new=AsyncMock(return_value=CaptchaResult(
                ok=False, score=0.2, reason="Suspicious activity detected",
            )),
        ):
            resp = client.post("/api/ingest", json=_contact_body())

        assert resp.status_code == 403
        assert resp.json()["code"] == "CAPTCHA_FAILED"
        assert resp.json()["error"] == "Suspicious activity detected"
        assert store.inputs == {}

    def test_sixth_submission_is_rate_limited(self, client):
        headers = {"X-Forwarded-For": "203.0.113.50"}
        statuses = [
            client.post("/api/ingest", json=_contact_body(), headers=headers).status_code
            for _ in range(5)
        ]
        resp = client.post("/api/ingest", json=_contact_body(), headers=headers)

        assert statuses == [201] * 5
        assert resp.status_code == 429
        assert resp.json()["code"] == "RATE_LIMITED"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert int(resp.headers["Retry-After"]) > 0

        # A different client still gets through
        other = client.post(
            "/api/ingest", json=_contact_body(), headers={"X-Forwarded-For": "203.0.113.51"},
        )
        assert other.status_code == 201


class TestChatMessage:
    """Session-gated chat messages."""

    def test_requires_session(self, client, store, broadcaster):
        resp = client.post("/api/ingest", json={"kind": "chat_message", "text": "hi"})

        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"
        assert store.inputs == {}
        assert broadcaster.published == []

    def test_success_is_published(self, client, store, broadcaster, session_lookup):
        session_lookup.return_value = USER
        resp = client.post(
            "/api/ingest",
            json={"kind": "chat_message", "text": "hello", "room": "kitchen"},
            headers=AUTH,
        )

        session_lookup.assert_awaited_once_with("jwt-token")

        assert resp.status_code == 201
        domain_id = resp.json()["domainId"]
        assert store.domain_rows[domain_id] == {"room": "kitchen", "text": "hello"}
        assert [(room, e["id"]) for room, e in broadcaster.published] == [("kitchen", domain_id)]

    def test_embedding_failure(self, client, store, session_lookup):
        session_lookup.return_value = USER
        with patch("app.services.ingest.embed_text", side_effect=RuntimeError("down")):
            resp = client.post(
                "/api/ingest", json={"kind": "chat_message", "text": "hello"}, headers=AUTH,
            )

        assert resp.status_code == 502
        assert resp.json()["code"] == "EMBEDDING_ERROR"
        assert store.inputs == {}


class TestSessionLookupOrder:
    """The session is resolved after the kind and rate-limit checks, for chat only."""

    def test_missing_kind_skips_lookup(self, client, session_lookup):
        for _ in range(3):
            resp = client.post("/api/ingest", json={"text": "hi"}, headers=AUTH)
            assert resp.status_code == 400
        session_lookup.assert_not_awaited()

    def test_contact_skips_lookup(self, client, session_lookup):
        client.cookies.set(settings.session_cookie_name, "stale")
        resp = client.post("/api/ingest", json=_contact_body(), headers=AUTH)

        assert resp.status_code == 201
        session_lookup.assert_not_awaited()

    def test_rate_limited_chat_skips_lookup(self, client, session_lookup):
        headers = {**AUTH, "X-Forwarded-For": "203.0.113.60"}
        limit = settings.chat_rate_limit_max_requests
        statuses = [
            client.post(
                "/api/ingest", json={"kind": "chat_message", "text": "hi"}, headers=headers,
            ).status_code
            for _ in range(limit + 5)
        ]

        assert statuses == [401] * limit + [429] * 5
        assert session_lookup.await_count == limit

    def test_unconfigured_auth_returns_json_error(self, client, session_lookup):
        session_lookup.side_effect = resolve_user
        client.cookies.set(settings.session_cookie_name, "stale")
        with (
            patch("app.services.auth._client", None),
            patch("app.services.auth.settings") as auth_settings,
        ):
            auth_settings.supabase_url = ""
            auth_settings.supabase_anon_key = ""
            chat = client.post("/api/ingest", json={"kind": "chat_message", "text": "hi"})
            contact = client.post("/api/ingest", json=_contact_body())

        assert chat.status_code == 500
        assert chat.json() == {
            "success": False,
            "error": "Internal server error",
            "code": "UNKNOWN_ERROR",
        }
        assert contact.status_code == 201


class TestRequestValidation:
    """Body-level rejections before any handler runs."""

    def test_missing_kind(self, client):
        resp = client.post("/api/ingest", json={"text": "hi"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"
        assert resp.json()["error"] == "Missing 'kind' field"

    def test_unknown_kind(self, client):
        resp = client.post("/api/ingest", json={"kind": "feedback", "text": "hi"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unknown input kind: feedback"

    def test_invalid_json(self, client):
        resp = client.post(
            "/api/ingest", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_unexpected_error_is_unknown(self, client):
        with patch("app.api.ingest.dispatch", new=AsyncMock(side_effect=KeyError("boom"))):
            resp = client.post("/api/ingest", json=_contact_body())

        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "error": "Internal server error",
            "code": "UNKNOWN_ERROR",
        }


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
