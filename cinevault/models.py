"""
Domain models for Cinevault
"""

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


# Subtitle codecs that can be muxed into MP4 as mov_text and extracted back to SRT
TEXT_SUBTITLE_CODECS = frozenset({"subrip", "srt", "ass", "ssa", "webvtt", "mov_text", "text"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackAction(str, Enum):
    COPY = "copy"
    TRANSCODE = "transcode"


@dataclass(frozen=True)
class SubtitleTrack:
    index: int
    codec_name: str
    language: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.codec_name.lower() in TEXT_SUBTITLE_CODECS


@dataclass(frozen=True)
class CodecProfile:
    """Result of probing a source file. Produced once per ingestion."""
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    subtitle_tracks: Tuple[SubtitleTrack, ...] = ()

    def get_subtitle_track(self, index: int) -> Optional[SubtitleTrack]:
        for track in self.subtitle_tracks:
            if track.index == index:
                return track
        return None

    def has_subtitle_track(self, index: int) -> bool:
        return self.get_subtitle_track(index) is not None


@dataclass(frozen=True)
class TranscodeStrategy:
    video_action: TrackAction
    audio_action: TrackAction
    # Text subtitle streams (absolute ffprobe indexes) carried into the output
    subtitle_indexes: Tuple[int, ...] = ()

    @property
    def is_passthrough(self) -> bool:
        return self.video_action == TrackAction.COPY and self.audio_action == TrackAction.COPY


@dataclass
class SourceAsset:
    """Uploaded file handed to the orchestrator for a single ingestion."""
    path: Path
    mime_type: str = "application/octet-stream"
    original_filename: str = ""

    def __post_init__(self):
        self.path = Path(self.path)
        if not self.original_filename:
            self.original_filename = self.path.name

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None, original_filename: str = "") -> "SourceAsset":
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(original_filename or path.name)[0] or "application/octet-stream"
        return cls(path=path, mime_type=mime_type, original_filename=original_filename)


@dataclass(frozen=True)
class StoredAsset:
    key: str
    size: int
    content_type: str = "application/octet-stream"


@dataclass
class CatalogEntry:
    title: str
    description: Optional[str]
    stored_object_key: str
    metadata_id: str
    subtitle_object_key: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "stored_object_key": self.stored_object_key,
            "subtitle_object_key": self.subtitle_object_key,
            "metadata_id": self.metadata_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class MovieMetadata:
    identifier: str
    title: str
    description: Optional[str] = None
    runtime_text: Optional[str] = None
    year: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


class IngestionState(str, Enum):
    RECEIVED = "received"
    PROBING = "probing"
    TRANSCODING = "transcoding"
    STORING = "storing"
    CATALOGING = "cataloging"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionStage(str, Enum):
    PROBE = "probe"
    TRANSCODE = "transcode"
    STORE = "store"
    CATALOG = "catalog"


class UploadStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadRecord:
    """Library-placement upload tracked by a StatusStore."""
    id: str
    original_name: str
    stored_path: str
    status: UploadStatus = UploadStatus.QUEUED
    target_path: Optional[str] = None
    message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "stored_path": self.stored_path,
            "target_path": self.target_path,
            "status": self.status.value,
            "message": self.message,
            "warnings": list(self.warnings),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
