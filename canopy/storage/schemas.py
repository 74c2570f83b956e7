"""Pydantic schemas for snapshot DB rows."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..core.models import Tier


class SnapshotRecord(BaseModel):
    """Metadata of one published snapshot (payload bytes excluded)."""

    session_id: str = Field(min_length=1)
    view: str = Field(min_length=1)
    version: int = Field(ge=0)
    tier: Tier
    node_count: int = Field(ge=0)
    saved_at: str
