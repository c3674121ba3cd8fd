"""Pydantic schemas used as views in the MVC architecture."""

from .common import CamelModel, ErrorResponse
from .library import (
    BookCreateRequest,
    BookUpdateRequest,
    ChapterCreateRequest,
    ChapterUpdateRequest,
    ConnectionResponse,
    SegmentCreateRequest,
    SegmentUpdateRequest,
    SyncStatusResponse,
)
from .narration import NarrationStatusResponse, RepairResponse

__all__ = [
    "BookCreateRequest",
    "BookUpdateRequest",
    "CamelModel",
    "ChapterCreateRequest",
    "ChapterUpdateRequest",
    "ConnectionResponse",
    "ErrorResponse",
    "NarrationStatusResponse",
    "RepairResponse",
    "SegmentCreateRequest",
    "SegmentUpdateRequest",
    "SyncStatusResponse",
]
