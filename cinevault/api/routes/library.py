"""
Library placement upload routes for Cinevault
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile

from ...service import MediaService
from ..dependencies import VIDEO_EXTENSIONS, check_extension, get_service, save_upload
from ..schemas import UploadResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/uploads", response_model=UploadResponse, status_code=202)
async def create_upload(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    service: MediaService = Depends(get_service),
):
    """Accept a finished file and place it into the library directory in the background."""
    check_extension(file.filename, VIDEO_EXTENSIONS, "video")
    stored_path = await save_upload(file, service.upload_dir)

    record = service.library.create_upload(file.filename or stored_path.name, stored_path)
    background_tasks.add_task(service.library.handle_upload, record)
    return UploadResponse(**record.to_dict())


@router.get("/api/uploads", response_model=List[UploadResponse])
async def list_uploads(service: MediaService = Depends(get_service)):
    return [UploadResponse(**record.to_dict()) for record in service.library.status_store.list()]


@router.get("/api/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(upload_id: str, service: MediaService = Depends(get_service)):
    return UploadResponse(**service.library.status_store.get(upload_id).to_dict())
