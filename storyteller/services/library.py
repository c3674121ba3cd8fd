"""In-memory catalog owned by the process and the edits applied to it."""

from __future__ import annotations

import logging
from typing import Any, Optional

from storyteller.domain.catalog import (
    Book,
    Catalog,
    Chapter,
    Segment,
    SegmentLocator,
)
from storyteller.errors import ConfigurationError, DataValidationError, NotFoundError
from storyteller.services.insights import ChapterInsightsService
from storyteller.services.repair import PublishRepairService, RepairReport
from storyteller.services.sync import SynchronizationService

logger = logging.getLogger(__name__)

_BOOK_FIELDS = {"title", "author", "description", "cover_url"}
_CHAPTER_FIELDS = {"title"}
_SEGMENT_FIELDS = {"title", "content", "voice_name"}
_AUDIO_INPUTS = {"content", "voice_name"}


def _changes(fields: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    unknown = set(fields) - allowed
    if unknown:
        raise DataValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    return {name: value for name, value in fields.items() if value is not None}


class LibraryState:
    """Owns the catalog loaded at startup and persists it after each edit."""

    def __init__(
        self,
        sync: SynchronizationService,
        *,
        insights: Optional[ChapterInsightsService] = None,
        repair: Optional[PublishRepairService] = None,
    ) -> None:
        self._sync = sync
        self._insights = insights
        self._repair = repair
        self._catalog = Catalog.empty()
        self._loaded = False

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def sync(self) -> SynchronizationService:
        return self._sync

    async def load(self) -> Catalog:
        catalog = await self._sync.load_catalog()
        reset = catalog.reset_interrupted_runs()
        if reset:
            logger.info("Reset %d segment(s) left mid-generation by a previous process", reset)
        self._catalog = catalog
        self._loaded = True
        return catalog

    async def persist(self) -> None:
        await self._sync.save_catalog(self._catalog.copy_deep())

    async def replace(self, catalog: Catalog) -> Catalog:
        catalog.reset_interrupted_runs()
        self._catalog = catalog
        await self.persist()
        return catalog

    # Lookups

    def require_book(self, book_id: str) -> Book:
        book = self._catalog.find_book(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found.")
        return book

    def require_chapter(self, book_id: str, chapter_id: str) -> tuple[Book, Chapter]:
        book = self.require_book(book_id)
        chapter = book.find_chapter(chapter_id)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_id} not found in book {book_id}.")
        return book, chapter

    def locate(self, locator: SegmentLocator) -> tuple[Book, Chapter, Segment]:
        book, chapter = self.require_chapter(locator.book_id, locator.chapter_id)
        segment = chapter.find_segment(locator.segment_id)
        if segment is None:
            raise NotFoundError(f"Segment {locator.segment_id} not found.")
        return book, chapter, segment

    def find_segment(self, locator: SegmentLocator) -> Segment | None:
        return self._catalog.find_segment(locator)

    # Books

    async def add_book(self, **fields: Any) -> Book:
        book = Book(**_changes(fields, _BOOK_FIELDS))
        self._catalog.books.append(book)
        await self.persist()
        return book

    async def update_book(self, book_id: str, **fields: Any) -> Book:
        book = self.require_book(book_id)
        for name, value in _changes(fields, _BOOK_FIELDS).items():
            setattr(book, name, value)
        await self.persist()
        return book

    async def delete_book(self, book_id: str) -> Book:
        book = self.require_book(book_id)
        self._catalog.books.remove(book)
        await self.persist()
        return book

    # Chapters

    async def add_chapter(self, book_id: str, **fields: Any) -> Chapter:
        book = self.require_book(book_id)
        chapter = Chapter(**_changes(fields, _CHAPTER_FIELDS))
        book.chapters.append(chapter)
        await self.persist()
        return chapter

    async def update_chapter(self, book_id: str, chapter_id: str, **fields: Any) -> Chapter:
        _, chapter = self.require_chapter(book_id, chapter_id)
        for name, value in _changes(fields, _CHAPTER_FIELDS).items():
            setattr(chapter, name, value)
        await self.persist()
        return chapter

    async def delete_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        book, chapter = self.require_chapter(book_id, chapter_id)
        book.chapters.remove(chapter)
        await self.persist()
        return chapter

    # Segments

    async def add_segment(self, book_id: str, chapter_id: str, **fields: Any) -> Segment:
        _, chapter = self.require_chapter(book_id, chapter_id)
        segment = Segment(**_changes(fields, _SEGMENT_FIELDS))
        chapter.segments.append(segment)
        await self.persist()
        return segment

    def edit_segment(self, locator: SegmentLocator, **fields: Any) -> tuple[Segment, bool]:
        """Apply an edit in place; return the segment and whether its audio went stale.

        Changing the text or the voice drops the playback reference and status
        immediately, before any new generation has run.
        """

        _, _, segment = self.locate(locator)
        changes = _changes(fields, _SEGMENT_FIELDS)
        stale = any(
            getattr(segment, name) != value
            for name, value in changes.items()
            if name in _AUDIO_INPUTS
        )
        for name, value in changes.items():
            setattr(segment, name, value)
        if stale:
            segment.reset_generation()
        return segment, stale

    async def delete_segment(self, locator: SegmentLocator) -> Segment:
        _, chapter, segment = self.locate(locator)
        chapter.segments.remove(segment)
        await self.persist()
        return segment

    def update_segment(self, locator: SegmentLocator, **changes: Any) -> Segment | None:
        """Patch a segment if it still exists. Used by generation runs."""

        segment = self.find_segment(locator)
        if segment is None:
            return None
        for name, value in changes.items():
            setattr(segment, name, value)
        return segment

    # Batch operations

    async def analyze_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        if self._insights is None:
            raise ConfigurationError("Chapter insights are not configured.")
        _, chapter = self.require_chapter(book_id, chapter_id)
        chapter.analyzing = True
        try:
            insights = await self._insights.analyze(chapter.title, chapter.full_text())
        finally:
            chapter.analyzing = False

        chapter.insights = insights
        await self.persist()
        return chapter

    async def repair(self) -> RepairReport:
        if self._repair is None:
            raise ConfigurationError("Publish repair needs object storage to be configured.")
        report = await self._repair.repair_all(self._catalog)
        if report.repaired:
            await self.persist()
        return report


__all__ = ["LibraryState"]
