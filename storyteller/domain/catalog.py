"""Catalog domain model: books, chapters and narrated segments.

The catalog is the unit of synchronization. It is always serialized as one
JSON document (``{"version": 1, "books": [...]}``) with camelCase keys so the
same payload can be stored in the relational row, mirrored to the local cache
and returned to HTTP clients unchanged.

Documents written before the version tag existed are bare arrays of books and
use a handful of older field names (``parts``, ``driveFileId``, ``audioUrl``,
``isGenerating`` ...). Those are accepted on read and never written back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from storyteller.errors import CatalogFormatError

CATALOG_VERSION = 1


def make_id(prefix: str) -> str:
    """Return an opaque identifier such as ``segment-3f2a9c0d1b7e``."""

    return f"{prefix}-{uuid4().hex[:12]}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class GenerationStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"
    CANCELED = "canceled"
    TIMED_OUT = "timedOut"

    @property
    def is_terminal(self) -> bool:
        return self is not GenerationStatus.GENERATING


class PlaybackKind(str, Enum):
    PUBLIC_URL = "publicUrl"
    OBJECT_ID = "objectId"
    INLINE = "inline"


@dataclass(frozen=True)
class PlaybackReference:
    """The single authoritative location of a segment's audio."""

    kind: PlaybackKind
    value: str


class _CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=True,
    )


class Segment(_CatalogModel):
    id: str = Field(default_factory=lambda: make_id("segment"))
    title: str = ""
    content: str = ""
    voice_name: str = ""
    audio_base64: Optional[str] = None
    object_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("objectId", "object_id", "driveFileId"),
        serialization_alias="objectId",
    )
    public_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "publicUrl", "public_url", "drivePublicUrl", "audioUrl"
        ),
        serialization_alias="publicUrl",
    )
    status: GenerationStatus = GenerationStatus.IDLE
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    error: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_status(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "status" in data:
            return data
        upgraded = dict(data)
        if upgraded.get("isGenerating"):
            upgraded["status"] = GenerationStatus.GENERATING.value
        elif upgraded.get("error"):
            upgraded["status"] = GenerationStatus.ERROR.value
        elif any(
            upgraded.get(key)
            for key in ("audioBase64", "driveFileId", "objectId", "audioUrl", "publicUrl")
        ):
            upgraded["status"] = GenerationStatus.READY.value
        return upgraded

    @property
    def has_audio(self) -> bool:
        return self.playback_reference() is not None

    def playback_reference(self) -> PlaybackReference | None:
        """Resolve the authoritative playback reference (URL > object id > inline)."""

        if self.public_url:
            return PlaybackReference(PlaybackKind.PUBLIC_URL, self.public_url)
        if self.object_id:
            return PlaybackReference(PlaybackKind.OBJECT_ID, self.object_id)
        if self.audio_base64:
            return PlaybackReference(PlaybackKind.INLINE, self.audio_base64)
        return None

    def attach_durable(self, object_id: str, public_url: str | None) -> None:
        """Point the segment at an uploaded object and drop any inline payload."""

        self.object_id = object_id
        self.public_url = public_url
        self.audio_base64 = None

    def clear_playback(self) -> None:
        self.audio_base64 = None
        self.object_id = None
        self.public_url = None

    def reset_generation(self) -> None:
        """Forget audio and status after a content edit."""

        self.clear_playback()
        self.status = GenerationStatus.IDLE
        self.progress = 0.0
        self.error = None


class ChapterInsights(_CatalogModel):
    summary: str
    questions: list[str] = Field(default_factory=list)


class Chapter(_CatalogModel):
    id: str = Field(default_factory=lambda: make_id("chapter"))
    title: str = ""
    segments: list[Segment] = Field(
        default_factory=list,
        validation_alias=AliasChoices("segments", "parts"),
    )
    insights: Optional[ChapterInsights] = None
    analyzing: bool = Field(
        default=False,
        validation_alias=AliasChoices("analyzing", "isAnalyzing"),
    )

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_insights(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "insights" in data or not data.get("summary"):
            return data
        folded = dict(data)
        folded["insights"] = {
            "summary": folded.pop("summary"),
            "questions": folded.pop("questions", None) or [],
        }
        return folded

    def find_segment(self, segment_id: str) -> Segment | None:
        return next((segment for segment in self.segments if segment.id == segment_id), None)

    def full_text(self) -> str:
        return "\n\n".join(segment.content for segment in self.segments if segment.content)


class Book(_CatalogModel):
    id: str = Field(default_factory=lambda: make_id("book"))
    title: str = ""
    author: str = ""
    description: str = ""
    cover_url: str = ""
    chapters: list[Chapter] = Field(default_factory=list)
    created_at: int = Field(default_factory=_now_ms)

    def find_chapter(self, chapter_id: str) -> Chapter | None:
        return next((chapter for chapter in self.chapters if chapter.id == chapter_id), None)


@dataclass(frozen=True)
class SegmentLocator:
    """Path to a segment inside the catalog."""

    book_id: str
    chapter_id: str
    segment_id: str


class Catalog(_CatalogModel):
    version: int = CATALOG_VERSION
    books: list[Book] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "Catalog":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.books

    @classmethod
    def from_document(cls, payload: Any) -> "Catalog":
        """Parse a stored document, accepting the unversioned list form."""

        if payload is None:
            return cls.empty()
        if isinstance(payload, list):
            payload = {"version": 0, "books": payload}
        if not isinstance(payload, dict):
            raise CatalogFormatError(
                f"Catalog document must be an object or list, got {type(payload).__name__}."
            )
        try:
            catalog = cls.model_validate(payload)
        except ValidationError as exc:
            raise CatalogFormatError(f"Invalid catalog document: {exc}") from exc
        if catalog.version > CATALOG_VERSION:
            raise CatalogFormatError(
                f"Catalog version {catalog.version} is newer than supported "
                f"version {CATALOG_VERSION}."
            )
        catalog.version = CATALOG_VERSION
        return catalog

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_remote_document(self) -> dict[str, Any]:
        """Serialize for the shared store, dropping inline audio already uploaded."""

        document = self.to_document()
        for book in document["books"]:
            for chapter in book["chapters"]:
                for segment in chapter["segments"]:
                    if segment.get("objectId") or segment.get("publicUrl"):
                        segment.pop("audioBase64", None)
        return document

    def copy_deep(self) -> "Catalog":
        return self.model_copy(deep=True)

    def find_book(self, book_id: str) -> Book | None:
        return next((book for book in self.books if book.id == book_id), None)

    def find_segment(self, locator: SegmentLocator) -> Segment | None:
        book = self.find_book(locator.book_id)
        chapter = book.find_chapter(locator.chapter_id) if book else None
        return chapter.find_segment(locator.segment_id) if chapter else None

    def iter_segments(self) -> Iterator[tuple[Book, Chapter, Segment]]:
        for book in self.books:
            for chapter in book.chapters:
                for segment in chapter.segments:
                    yield book, chapter, segment

    def reset_interrupted_runs(self) -> int:
        """Return segments persisted mid-run to idle; no run survives a restart."""

        reset = 0
        for _, _, segment in self.iter_segments():
            if not segment.status.is_terminal:
                segment.status = GenerationStatus.IDLE
                segment.progress = 0.0
                reset += 1
        for book in self.books:
            for chapter in book.chapters:
                chapter.analyzing = False
        return reset


__all__ = [
    "CATALOG_VERSION",
    "Book",
    "Catalog",
    "Chapter",
    "ChapterInsights",
    "GenerationStatus",
    "PlaybackKind",
    "PlaybackReference",
    "Segment",
    "SegmentLocator",
    "make_id",
]
