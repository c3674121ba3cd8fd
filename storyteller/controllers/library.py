"""Catalog endpoints: whole-library sync plus book/chapter/segment editing."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, status

from storyteller.controllers.dependencies import ServicesDep
from storyteller.domain.catalog import Catalog, SegmentLocator
from storyteller.views import (
    BookCreateRequest,
    BookUpdateRequest,
    ChapterCreateRequest,
    ChapterUpdateRequest,
    ConnectionResponse,
    SegmentCreateRequest,
    SegmentUpdateRequest,
    SyncStatusResponse,
)

router = APIRouter(prefix="/library", tags=["library"])


def _dump(model) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _discard_runs(services, segment_ids) -> None:
    for segment_id in segment_ids:
        services.orchestrator.discard(segment_id)


@router.get("")
async def get_library(services: ServicesDep) -> dict[str, Any]:
    return services.library.catalog.to_document()


@router.put("")
async def replace_library(
    services: ServicesDep,
    payload: Any = Body(...),
) -> dict[str, Any]:
    """Replace the whole catalog; in-flight runs for the old one are dropped."""

    catalog = Catalog.from_document(payload)
    _discard_runs(services, services.orchestrator.active_runs())
    await services.library.replace(catalog)
    return catalog.to_document()


@router.get("/status", response_model=SyncStatusResponse)
async def library_status(services: ServicesDep) -> SyncStatusResponse:
    sync_status = services.sync.status()
    connection = await services.sync.probe()
    return SyncStatusResponse(
        remote_configured=sync_status.remote_configured,
        current_key=sync_status.current_key,
        last_load_source=(
            sync_status.last_load_source.value if sync_status.last_load_source else None
        ),
        last_error=sync_status.last_error,
        connection=ConnectionResponse(
            connected=connection.connected,
            message=connection.message,
            latency_ms=connection.latency_ms,
        ),
    )


@router.post("/cache/clear")
async def clear_cache(services: ServicesDep) -> dict[str, str]:
    await services.sync.clear_local_cache()
    return {"message": "Local catalog cache cleared"}


@router.post("/books", status_code=status.HTTP_201_CREATED)
async def create_book(request: BookCreateRequest, services: ServicesDep) -> dict[str, Any]:
    book = await services.library.add_book(**request.model_dump())
    return _dump(book)


@router.patch("/books/{book_id}")
async def update_book(
    book_id: str,
    request: BookUpdateRequest,
    services: ServicesDep,
) -> dict[str, Any]:
    book = await services.library.update_book(book_id, **request.model_dump(exclude_unset=True))
    return _dump(book)


@router.delete("/books/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(book_id: str, services: ServicesDep) -> None:
    book = services.library.require_book(book_id)
    _discard_runs(
        services,
        [segment.id for chapter in book.chapters for segment in chapter.segments],
    )
    await services.library.delete_book(book_id)


@router.post("/books/{book_id}/chapters", status_code=status.HTTP_201_CREATED)
async def create_chapter(
    book_id: str,
    request: ChapterCreateRequest,
    services: ServicesDep,
) -> dict[str, Any]:
    chapter = await services.library.add_chapter(book_id, **request.model_dump())
    return _dump(chapter)


@router.patch("/books/{book_id}/chapters/{chapter_id}")
async def update_chapter(
    book_id: str,
    chapter_id: str,
    request: ChapterUpdateRequest,
    services: ServicesDep,
) -> dict[str, Any]:
    chapter = await services.library.update_chapter(
        book_id, chapter_id, **request.model_dump(exclude_unset=True)
    )
    return _dump(chapter)


@router.delete(
    "/books/{book_id}/chapters/{chapter_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_chapter(book_id: str, chapter_id: str, services: ServicesDep) -> None:
    _, chapter = services.library.require_chapter(book_id, chapter_id)
    _discard_runs(services, [segment.id for segment in chapter.segments])
    await services.library.delete_chapter(book_id, chapter_id)


@router.post("/books/{book_id}/chapters/{chapter_id}/insights")
async def analyze_chapter(book_id: str, chapter_id: str, services: ServicesDep) -> dict[str, Any]:
    chapter = await services.library.analyze_chapter(book_id, chapter_id)
    return _dump(chapter)


@router.post(
    "/books/{book_id}/chapters/{chapter_id}/segments",
    status_code=status.HTTP_201_CREATED,
)
async def create_segment(
    book_id: str,
    chapter_id: str,
    request: SegmentCreateRequest,
    services: ServicesDep,
) -> dict[str, Any]:
    segment = await services.library.add_segment(book_id, chapter_id, **request.model_dump())
    return _dump(segment)


@router.patch("/books/{book_id}/chapters/{chapter_id}/segments/{segment_id}")
async def update_segment(
    book_id: str,
    chapter_id: str,
    segment_id: str,
    request: SegmentUpdateRequest,
    services: ServicesDep,
) -> dict[str, Any]:
    """Edit a segment. New text or voice invalidates audio and any run in flight."""

    locator = SegmentLocator(book_id, chapter_id, segment_id)
    segment, stale = services.library.edit_segment(
        locator, **request.model_dump(exclude_unset=True)
    )
    if stale:
        services.orchestrator.discard(segment_id)
    await services.library.persist()
    return _dump(segment)


@router.delete(
    "/books/{book_id}/chapters/{chapter_id}/segments/{segment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_segment(
    book_id: str,
    chapter_id: str,
    segment_id: str,
    services: ServicesDep,
) -> None:
    locator = SegmentLocator(book_id, chapter_id, segment_id)
    services.library.locate(locator)
    services.orchestrator.discard(segment_id)
    await services.library.delete_segment(locator)
