"""Schemas for narration runs and publish repair."""

from __future__ import annotations

from typing import Optional

from storyteller.views.common import CamelModel


class NarrationStatusResponse(CamelModel):
    segment_id: str
    status: str
    progress: float
    error: Optional[str] = None
    object_id: Optional[str] = None
    public_url: Optional[str] = None
    active: bool = False


class RepairResponse(CamelModel):
    repaired: int
    failed: int
    first_error: Optional[str] = None


__all__ = ["NarrationStatusResponse", "RepairResponse"]
