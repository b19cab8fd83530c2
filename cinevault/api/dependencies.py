"""
Shared request dependencies and upload helpers for the API routes
"""

import re
import shutil
import uuid
from pathlib import Path
from typing import Iterable

from fastapi import HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from ..service import MediaService

VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".wmv", ".mkv", ".webm", ".flv", ".avchd"})
SUBTITLE_EXTENSIONS = frozenset({".srt"})
MAX_SUBTITLE_BYTES = 5 * 1024 * 1024

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def get_service(request: Request) -> MediaService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return service


def check_extension(filename: str, allowed: Iterable[str], kind: str) -> None:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in allowed:
        raise HTTPException(
            status_code=415,
            detail=f"Unsupported {kind} file type '{suffix or filename}'. Allowed: {', '.join(sorted(allowed))}",
        )


async def save_upload(upload: UploadFile, directory: Path) -> Path:
    """Copy an uploaded file to ``directory`` under a collision-free name."""
    safe_name = _UNSAFE_NAME_CHARS.sub("_", Path(upload.filename or "upload").name)
    target = directory / f"{uuid.uuid4().hex[:12]}-{safe_name}"

    def copy():
        directory.mkdir(parents=True, exist_ok=True)
        try:
            with open(target, "wb") as out:
                shutil.copyfileobj(upload.file, out, 1024 * 1024)
        except BaseException:
            target.unlink(missing_ok=True)
            raise

    await run_in_threadpool(copy)
    return target
