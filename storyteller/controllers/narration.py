"""Narration run endpoints: start, inspect, cancel, and publish repair."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from storyteller.controllers.dependencies import ServicesDep
from storyteller.domain.catalog import SegmentLocator
from storyteller.views import NarrationStatusResponse, RepairResponse

router = APIRouter(prefix="/narration", tags=["narration"])


def _status(services, locator: SegmentLocator) -> NarrationStatusResponse:
    _, _, segment = services.library.locate(locator)
    return NarrationStatusResponse(
        segment_id=segment.id,
        status=segment.status.value,
        progress=segment.progress,
        error=segment.error,
        object_id=segment.object_id,
        public_url=segment.public_url,
        active=services.orchestrator.is_running(segment.id),
    )


@router.post("/repair", response_model=RepairResponse)
async def repair_publication(services: ServicesDep) -> RepairResponse:
    """Re-publish every stored narration and refresh its public URL."""

    report = await services.library.repair()
    return RepairResponse(
        repaired=report.repaired,
        failed=report.failed,
        first_error=report.first_error,
    )


@router.post(
    "/{book_id}/{chapter_id}/{segment_id}",
    response_model=NarrationStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_narration(
    book_id: str,
    chapter_id: str,
    segment_id: str,
    services: ServicesDep,
) -> NarrationStatusResponse:
    locator = SegmentLocator(book_id, chapter_id, segment_id)
    services.orchestrator.start(locator)
    return _status(services, locator)


@router.get("/{book_id}/{chapter_id}/{segment_id}", response_model=NarrationStatusResponse)
async def narration_status(
    book_id: str,
    chapter_id: str,
    segment_id: str,
    services: ServicesDep,
) -> NarrationStatusResponse:
    return _status(services, SegmentLocator(book_id, chapter_id, segment_id))


@router.delete("/{book_id}/{chapter_id}/{segment_id}", response_model=NarrationStatusResponse)
async def cancel_narration(
    book_id: str,
    chapter_id: str,
    segment_id: str,
    services: ServicesDep,
) -> NarrationStatusResponse:
    locator = SegmentLocator(book_id, chapter_id, segment_id)
    services.library.locate(locator)
    if not services.orchestrator.cancel(segment_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No narration is running for this segment.",
        )
    return _status(services, locator)
