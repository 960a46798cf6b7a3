"""RAG access tokens - signed JWTs scoped to one activity."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import jwt

from ..config import StudioSettings, settings

ALGORITHM = "HS256"


class TokenNotConfigured(Exception):
    """Raised when XRSTUDIO_API_SECRET_KEY is missing."""


def _secret(settings_obj: StudioSettings) -> str:
    secret = (settings_obj.api_secret_key or "").strip()
    if not secret:
        raise TokenNotConfigured("XRSTUDIO_API_SECRET_KEY is required for RAG tokens")
    return secret


def issue_rag_token(
    activity_id: str,
    *,
    settings_obj: StudioSettings | None = None,
    now: datetime | None = None,
) -> str:
    cfg = settings_obj or settings
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "activityId": activity_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(days=cfg.rag_token_ttl_days),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(payload, _secret(cfg), algorithm=ALGORITHM)


def verify_rag_token(token: str, *, settings_obj: StudioSettings | None = None) -> dict | None:
    """Return the token payload, or None if it is invalid or expired."""
    cfg = settings_obj or settings
    secret = _secret(cfg)
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    if not isinstance(payload.get("activityId"), str):
        return None
    return payload
