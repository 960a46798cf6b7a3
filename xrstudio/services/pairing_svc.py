"""Pairing codes - short-lived codes that bind a headset to an organization."""

from __future__ import annotations

import secrets
import string

from ..config import settings
from ..store import new_id
from ..store.schema import now_ms

PAIRING_COLLECTION = "pairing_codes"
CODE_LENGTH = 6
CODE_ALPHABET = string.ascii_uppercase + string.digits


def new_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


async def generate_pairing_code(collection, org_id: str) -> dict:
    """Create and persist an active code that expires after the configured TTL."""
    now = now_ms()
    record = {
        "_id": new_id(),
        "code": new_code(),
        "orgId": org_id,
        "createdAt": now,
        "expiresAt": now + settings.pairing_code_ttl_hours * 60 * 60 * 1000,
        "isActive": True,
    }
    result = await collection.insert_one(record)
    return {**record, "_id": result.inserted_id}


async def validate_pairing_code(collection, code: str, *, now: int | None = None) -> dict | None:
    """Return the code record if it is active and unexpired, else None."""
    record = await collection.find_one({"code": code, "isActive": True})
    if not record:
        return None
    current = now_ms() if now is None else now
    if record.get("expiresAt", 0) <= current:
        return None
    return record


async def get_org_id_from_pairing_code(collection, code: str) -> str | None:
    record = await validate_pairing_code(collection, code)
    return record.get("orgId") if record else None
