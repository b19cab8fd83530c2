"""
Stream serving routes for Cinevault
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from ...service import MediaService
from ..dependencies import get_service

router = APIRouter()


async def _stream_object(key: str, request: Request, service: MediaService) -> StreamingResponse:
    stream, partial = await service.open_stream(key, request.headers.get("range"))

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(stream.length),
    }
    if partial:
        headers["Content-Range"] = stream.content_range

    return StreamingResponse(
        stream,
        status_code=206 if partial else 200,
        headers=headers,
        media_type=stream.content_type,
    )


@router.get("/api/movies/{metadata_id}/stream")
async def stream_movie(metadata_id: str, request: Request, service: MediaService = Depends(get_service)):
    """Serve the stored movie, honouring Range for seeking."""
    entry = await service.get_entry(metadata_id)
    return await _stream_object(entry.stored_object_key, request, service)


@router.get("/api/movies/{metadata_id}/subtitle")
async def stream_subtitle(metadata_id: str, request: Request, service: MediaService = Depends(get_service)):
    """Serve the movie's SRT subtitle."""
    entry = await service.get_entry(metadata_id)
    if not entry.subtitle_object_key:
        raise HTTPException(status_code=404, detail="Movie has no subtitle")
    return await _stream_object(entry.subtitle_object_key, request, service)
