"""Pairing and diagnosis route tests."""

from __future__ import annotations

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_generate_and_validate(client: AsyncClient):
    resp = await client.post("/api/pairing/generate")
    assert resp.status_code == 200
    code = resp.json()["code"]
    assert len(code) == 6

    resp = await client.get("/api/pairing/validate", params={"code": code.lower()}, headers={"X-Org-Id": ""})
    assert resp.status_code == 200
    assert resp.json() == {"orgId": "org-1"}


@pytest.mark.asyncio
async def test_validate_errors(client: AsyncClient):
    resp = await client.get("/api/pairing/validate")
    assert resp.status_code == 400
    resp = await client.get("/api/pairing/validate", params={"code": "NOPE00"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_diagnosis(client: AsyncClient, activity: dict):
    resp = await client.get("/api/diagnosis", params={"activityId": "A1"})
    assert resp.status_code == 200
    info = resp.json()
    assert info["dbMode"] == "embedded"
    assert info["activity"]["name"] == "Welding basics"
    assert info["documentIds"] == []
    assert "activity_documents" in info["sqlite"]["tables"]


@pytest.mark.asyncio
async def test_diagnosis_requires_activity_id(client: AsyncClient):
    resp = await client.get("/api/diagnosis")
    assert resp.status_code == 400
