"""Activity request schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class ActivityCreate(BaseModel):
    title: str
    format: Literal["AR", "VR"]
    platform: Literal["headset", "web"]
    bannerUrl: str | None = None


class ActivityUpdate(BaseModel):
    title: str
    description: str | None = None
    bannerUrl: str | None = None
    format: Literal["AR", "VR"] | None = None
    platform: Literal["headset", "web"] | None = None
    ragEnabled: bool | None = None
