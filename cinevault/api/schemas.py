"""
Response models for the Cinevault HTTP API
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    current_jobs: int
    queued_jobs: int


class EncoderResponse(BaseModel):
    choice: str
    encoder: str
    available: bool
    device_path: Optional[str] = None
    reason: Optional[str] = None


class CapabilitiesResponse(BaseModel):
    encoders: List[EncoderResponse]
    selected: str
    fallback_to_software: bool
    max_concurrent_jobs: int
    max_queued_jobs: int


class StatsResponse(BaseModel):
    total_jobs_processed: int
    successful_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    rejected_jobs: int
    current_queue_length: int
    active_jobs: int
    average_processing_time: float
    encoder_usage: Dict[str, int] = Field(default_factory=dict)
    uptime_seconds: float


class CatalogEntryResponse(BaseModel):
    id: Optional[int] = None
    title: str
    description: Optional[str] = None
    stored_object_key: str
    subtitle_object_key: Optional[str] = None
    metadata_id: str
    created_at: Optional[datetime] = None


class JobResponse(BaseModel):
    job_id: str
    status: str
    metadata_id: str
    source_name: str
    state: Optional[str] = None
    failed_stage: Optional[str] = None
    retryable: Optional[bool] = None
    error_message: Optional[str] = None
    entry: Optional[CatalogEntryResponse] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SubtitleResponse(BaseModel):
    metadata_id: str
    track_index: int
    subtitle_object_key: str


class UploadResponse(BaseModel):
    id: str
    original_name: str
    stored_path: str
    target_path: Optional[str] = None
    status: str
    message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseModel):
    detail: str
    stage: Optional[str] = None
    retryable: bool = False
