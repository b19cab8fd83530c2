"""
Ingestion, job and catalog routes for Cinevault
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from ...ingest import cleanup_paths
from ...models import SourceAsset
from ...service import MediaService
from ..dependencies import (
    MAX_SUBTITLE_BYTES,
    SUBTITLE_EXTENSIONS,
    VIDEO_EXTENSIONS,
    check_extension,
    get_service,
    save_upload,
)
from ..schemas import CatalogEntryResponse, JobResponse, SubtitleResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/movies", response_model=JobResponse, status_code=202)
async def ingest_movie(
    file: UploadFile = File(...),
    metadata_id: str = Form(...),
    subtitle: Optional[UploadFile] = File(None),
    subtitle_track: Optional[int] = Form(None),
    wait: bool = Query(False, description="Block until the ingestion finishes"),
    service: MediaService = Depends(get_service),
):
    """Upload a movie for ingestion. Returns the queued job (or the entry when ``wait``)."""
    check_extension(file.filename, VIDEO_EXTENSIONS, "video")
    if subtitle is not None and subtitle.filename:
        check_extension(subtitle.filename, SUBTITLE_EXTENSIONS, "subtitle")
    else:
        subtitle = None

    video_path = await save_upload(file, service.upload_dir)
    subtitle_path = None
    if subtitle is not None:
        try:
            subtitle_path = await save_upload(subtitle, service.upload_dir)
        except BaseException:
            await cleanup_paths([video_path])
            raise
        if subtitle_path.stat().st_size > MAX_SUBTITLE_BYTES:
            await cleanup_paths([video_path, subtitle_path])
            raise HTTPException(status_code=413, detail="Subtitle file exceeds 5MB")

    source = SourceAsset.from_path(
        video_path, mime_type=file.content_type, original_filename=file.filename or video_path.name
    )

    if wait:
        entry = await service.ingest(source, metadata_id, subtitle_path, subtitle_track)
        return JSONResponse(
            status_code=201,
            content=CatalogEntryResponse(**entry.to_dict()).model_dump(mode="json"),
        )

    job = await service.submit(source, metadata_id, subtitle_path, subtitle_track)
    return JobResponse(**job.to_dict())


@router.get("/api/jobs", response_model=List[JobResponse])
async def list_jobs(service: MediaService = Depends(get_service)):
    return [JobResponse(**job.to_dict()) for job in service.queue.get_all_jobs()]


@router.get("/api/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, service: MediaService = Depends(get_service)):
    return JobResponse(**service.queue.get_job(job_id).to_dict())


@router.delete("/api/jobs/{job_id}")
async def cancel_job(job_id: str, service: MediaService = Depends(get_service)):
    if not await service.queue.cancel_job(job_id):
        raise HTTPException(status_code=409, detail="Job already finished")
    return {"status": "cancelled", "job_id": job_id}


@router.get("/api/movies", response_model=List[CatalogEntryResponse])
async def list_movies(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: MediaService = Depends(get_service),
):
    entries = await service.catalog.list_entries(limit, offset)
    return [CatalogEntryResponse(**entry.to_dict()) for entry in entries]


@router.get("/api/movies/{metadata_id}", response_model=CatalogEntryResponse)
async def get_movie(metadata_id: str, service: MediaService = Depends(get_service)):
    entry = await service.get_entry(metadata_id)
    return CatalogEntryResponse(**entry.to_dict())


@router.delete("/api/movies/{metadata_id}", response_model=CatalogEntryResponse)
async def delete_movie(metadata_id: str, service: MediaService = Depends(get_service)):
    entry = await service.delete(metadata_id)
    return CatalogEntryResponse(**entry.to_dict())


@router.post("/api/movies/{metadata_id}/subtitles/{track_index}", response_model=SubtitleResponse)
async def extract_subtitle(metadata_id: str, track_index: int, service: MediaService = Depends(get_service)):
    """Extract an embedded subtitle stream of a stored movie to SRT."""
    key = await service.extract_subtitle(metadata_id, track_index)
    return SubtitleResponse(metadata_id=metadata_id, track_index=track_index, subtitle_object_key=key)
