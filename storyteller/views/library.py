"""Schemas for catalog editing and synchronization status."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from storyteller.views.common import CamelModel


class BookCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=300)
    author: str = ""
    description: str = ""
    cover_url: str = ""


class BookUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    author: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None


class ChapterCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=300)


class ChapterUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)


class SegmentCreateRequest(CamelModel):
    title: str = ""
    content: str = ""
    voice_name: str = ""


class SegmentUpdateRequest(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    voice_name: Optional[str] = None


class ConnectionResponse(CamelModel):
    connected: bool
    message: str
    latency_ms: Optional[int] = None


class SyncStatusResponse(CamelModel):
    remote_configured: bool
    current_key: str
    last_load_source: Optional[str] = None
    last_error: Optional[str] = None
    connection: ConnectionResponse


__all__ = [
    "BookCreateRequest",
    "BookUpdateRequest",
    "ChapterCreateRequest",
    "ChapterUpdateRequest",
    "ConnectionResponse",
    "SegmentCreateRequest",
    "SegmentUpdateRequest",
    "SyncStatusResponse",
]
