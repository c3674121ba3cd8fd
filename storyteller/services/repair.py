"""Batch re-publication of segments whose public URL is missing or stale."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from storyteller.domain.catalog import Catalog, Segment, SegmentLocator
from storyteller.telemetry import record_repair

logger = logging.getLogger(__name__)


class PublishingStorage(Protocol):
    async def grant_public_read(self, object_id: str) -> None: ...

    def public_url(self, object_id: str) -> str: ...

    def object_id_from_url(self, url: str) -> Optional[str]: ...


@dataclass(frozen=True)
class RepairReport:
    repaired: int
    failed: int
    first_error: Optional[str] = None


class PublishRepairService:
    """Re-grant public read access and rebuild canonical URLs."""

    def __init__(self, storage: PublishingStorage) -> None:
        self._storage = storage

    def resolve_object_id(self, segment: Segment) -> str | None:
        if segment.object_id:
            return segment.object_id
        if segment.public_url:
            return self._storage.object_id_from_url(segment.public_url)
        return None

    async def repair_all(self, catalog: Catalog) -> RepairReport:
        """Publish every segment with an object id, continuing past failures.

        The catalog is only touched once the whole batch has finished, and
        only for segments whose publication succeeded and which still point
        at the object that was published.
        """

        targets = []
        for book, chapter, segment in catalog.iter_segments():
            object_id = self.resolve_object_id(segment)
            if object_id:
                targets.append((SegmentLocator(book.id, chapter.id, segment.id), object_id))

        updates: list[tuple[SegmentLocator, str, str]] = []
        failed = 0
        first_error: str | None = None
        for locator, object_id in targets:
            try:
                await self._storage.grant_public_read(object_id)
                url = self._storage.public_url(object_id)
            except Exception as exc:
                failed += 1
                if first_error is None:
                    first_error = str(exc)
                logger.warning("Could not republish %s (%s): %s", locator.segment_id, object_id, exc)
                continue
            updates.append((locator, object_id, url))

        repaired = 0
        for locator, object_id, url in updates:
            segment = catalog.find_segment(locator)
            if segment is None or self.resolve_object_id(segment) != object_id:
                logger.info("Skipping %s: its audio changed during repair", locator.segment_id)
                continue
            segment.attach_durable(object_id, url)
            repaired += 1

        record_repair(repaired, failed)
        logger.info("Publish repair finished: repaired=%d failed=%d", repaired, failed)
        return RepairReport(repaired=repaired, failed=failed, first_error=first_error)


__all__ = ["PublishRepairService", "PublishingStorage", "RepairReport"]
