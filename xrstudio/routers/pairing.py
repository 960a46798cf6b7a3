"""Headset pairing: codes generated by an org, validated by a device."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..schemas.documents import PairingCodeResponse, PairingValidation
from ..services import pairing_svc
from ..store import DocumentStore
from ..tenant.deps import get_current_org_id, get_document_store

router = APIRouter(prefix="/api/pairing", tags=["pairing"])


@router.post("/generate", response_model=PairingCodeResponse)
async def pairing_generate(
    org_id: str = Depends(get_current_org_id),
    store: DocumentStore = Depends(get_document_store),
):
    record = await pairing_svc.generate_pairing_code(
        store.collection(pairing_svc.PAIRING_COLLECTION), org_id
    )
    return PairingCodeResponse(code=record["code"], expiresAt=record["expiresAt"])


@router.get("/validate", response_model=PairingValidation)
async def pairing_validate(
    code: str | None = None,
    store: DocumentStore = Depends(get_document_store),
):
    if not code:
        raise HTTPException(status_code=400, detail="Code is required")
    org_id = await pairing_svc.get_org_id_from_pairing_code(
        store.collection(pairing_svc.PAIRING_COLLECTION), code.strip().upper()
    )
    if not org_id:
        raise HTTPException(status_code=401, detail="Invalid or expired code")
    return PairingValidation(orgId=org_id)
