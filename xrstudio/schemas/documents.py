"""Document and pairing request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel


class LinkRequest(BaseModel):
    activityId: str


class PairingCodeResponse(BaseModel):
    code: str
    expiresAt: int


class PairingValidation(BaseModel):
    orgId: str


class RagTokenResponse(BaseModel):
    token: str
    activityId: str


class SignedUrlResponse(BaseModel):
    url: str
    expiresIn: int
