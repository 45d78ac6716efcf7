# =============================================================================
# Captcha Service - Google reCAPTCHA Server-Side Verification
# =============================================================================
#
# Verifies a client token against the siteverify API. reCAPTCHA v3 responses
# carry a score (0.0 bot ... 1.0 human); anything under the configured
# threshold (0.5) is rejected. v2 responses have no score and pass on
# `success` alone.
#
# The result is a boolean gate plus a human-readable reason that the ingest
# route returns to the client as-is. Never raises: network and API errors
# are rejections.
#
# The `requests` call is blocking. Async callers use `verify_recaptcha_async`,
# which runs it in a worker thread.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import requests

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptchaResult:
    ok: bool
    score: float | None = None
    reason: str | None = None


def verify_recaptcha(token: str | None, remote_ip: str | None = None) -> CaptchaResult:
    """
    Verify a reCAPTCHA token.

    Args:
        token: Token produced by the reCAPTCHA widget on the client.
        remote_ip: Optional client IP, forwarded to Google as `remoteip`.

    Returns:
        CaptchaResult with ok=False and a reason on any rejection.
    """
    secret = settings.recaptcha_secret_key
    if not secret:
        logger.error("RECAPTCHA_SECRET_KEY not configured")
        return CaptchaResult(ok=False, reason="Server configuration error")

    if not token:
        return CaptchaResult(ok=False, reason="Missing captcha token")

    form = {"secret": secret, "response": token}
    if remote_ip:
        form["remoteip"] = remote_ip

    try:
        response = requests.post(
            settings.recaptcha_verify_url,
            data=form,
            timeout=settings.recaptcha_timeout_seconds,
        )
    except requests.RequestException as e:
        logger.error("reCAPTCHA verification error: %s", e)
        return CaptchaResult(ok=False, reason="Captcha verification failed")

    if not response.ok:
        logger.error("reCAPTCHA API error: HTTP %d", response.status_code)
        return CaptchaResult(
            ok=False, reason="Captcha verification service unavailable",
        )

    try:
        data = response.json()
    except ValueError:
        logger.error("reCAPTCHA API returned a non-JSON body")
        return CaptchaResult(ok=False, reason="Captcha verification failed")

    if not data.get("success"):
        error_codes = ", ".join(data.get("error-codes") or []) or "unknown"
        logger.warning("reCAPTCHA verification failed: %s", error_codes)
        return CaptchaResult(ok=False, reason="Captcha verification failed")

    score = data.get("score")
    if score is None:
        # v2: no score
        return CaptchaResult(ok=True)

    score = float(score)
    if score < settings.recaptcha_min_score:
        logger.warning("reCAPTCHA score too low: %.2f", score)
        return CaptchaResult(
            ok=False, score=score, reason="Suspicious activity detected",
        )

    return CaptchaResult(ok=True, score=score)


async def verify_recaptcha_async(
    token: str | None,
    remote_ip: str | None = None,
) -> CaptchaResult:
    return await asyncio.to_thread(verify_recaptcha, token, remote_ip)
