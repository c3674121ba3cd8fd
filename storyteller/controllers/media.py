"""Streams published narration audio back to clients."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from storyteller.controllers.dependencies import ServicesDep

router = APIRouter(prefix="/media", tags=["media"])


def _is_narration_key(object_id: str, folder_name: str) -> bool:
    prefix = f"{folder_name.strip('/')}/"
    parts = object_id.split("/")
    return object_id.startswith(prefix) and len(object_id) > len(prefix) and ".." not in parts


@router.get("/{object_id:path}", response_class=StreamingResponse)
async def stream_media(object_id: str, services: ServicesDep) -> StreamingResponse:
    if services.storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Object storage is not configured.",
        )
    # Only published narrations are served, never arbitrary bucket keys.
    if not _is_narration_key(object_id, services.settings.s3.folder_name):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Object not found: {object_id}",
        )

    stream = await services.storage.stream_content(object_id)
    headers = {}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    return StreamingResponse(stream.chunks, media_type=stream.content_type, headers=headers)
