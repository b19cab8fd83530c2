"""
Cinevault - media ingestion and range-streaming core for a self-hosted movie library
"""

__version__ = "1.2.0"

from .errors import (
    CinevaultError,
    ProbeError,
    TranscodeError,
    TranscodeSpawnError,
    StoreError,
    CatalogError,
    MetadataError,
    NotFoundError,
    RangeError,
    QueueFullError,
    IngestionError,
)
from .models import (
    TrackAction,
    SubtitleTrack,
    CodecProfile,
    TranscodeStrategy,
    SourceAsset,
    StoredAsset,
    CatalogEntry,
    MovieMetadata,
    IngestionState,
    IngestionStage,
    UploadStatus,
    UploadRecord,
)
from .hardware import EncoderChoice, HardwareEncoderSelector

__all__ = [
    "__version__",
    "CinevaultError",
    "ProbeError",
    "TranscodeError",
    "TranscodeSpawnError",
    "StoreError",
    "CatalogError",
    "MetadataError",
    "NotFoundError",
    "RangeError",
    "QueueFullError",
    "IngestionError",
    "TrackAction",
    "SubtitleTrack",
    "CodecProfile",
    "TranscodeStrategy",
    "SourceAsset",
    "StoredAsset",
    "CatalogEntry",
    "MovieMetadata",
    "IngestionState",
    "IngestionStage",
    "UploadStatus",
    "UploadRecord",
    "EncoderChoice",
    "HardwareEncoderSelector",
]
