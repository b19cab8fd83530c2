"""
Health, capabilities and stats API routes for Cinevault
"""

import time
from fastapi import APIRouter, Depends

from ... import __version__
from ...service import MediaService
from ..dependencies import get_service
from ..schemas import HealthResponse, CapabilitiesResponse, EncoderResponse, StatsResponse

router = APIRouter()

# Start time - set by lifespan
start_time: float = 0


def set_start_time(t: float) -> None:
    """Set the server start time."""
    global start_time
    start_time = t


@router.get("/api/health", response_model=HealthResponse)
async def health_check(service: MediaService = Depends(get_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        current_jobs=service.queue.get_active_count(),
        queued_jobs=service.queue.get_queue_length(),
    )


@router.get("/api/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities(service: MediaService = Depends(get_service)):
    """Encoders detected on this host, in priority order."""
    capabilities = service.selector.detect()
    selected = next(cap for cap in capabilities if cap.available)

    return CapabilitiesResponse(
        encoders=[EncoderResponse(**cap.to_dict()) for cap in capabilities],
        selected=selected.choice.value,
        fallback_to_software=service.config.hardware.fallback_to_software,
        max_concurrent_jobs=service.queue.max_workers,
        max_queued_jobs=service.queue.max_queued,
    )


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats(service: MediaService = Depends(get_service)):
    """Get ingestion statistics."""
    queue = service.queue
    stats = queue.stats.to_dict()

    return StatsResponse(
        current_queue_length=queue.get_queue_length(),
        active_jobs=queue.get_active_count(),
        **stats,
    )
