"""
Bounded ingestion queue for Cinevault
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, field

from .errors import IngestionError, NotFoundError, QueueFullError
from .ingest import Ingestion, IngestionOrchestrator, cleanup_paths
from .models import CatalogEntry, SourceAsset, utcnow

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class IngestJob:
    """Represents one queued ingestion."""
    id: str
    source: SourceAsset
    metadata_id: str
    subtitle_path: Optional[Path] = None
    subtitle_track: Optional[int] = None
    status: JobStatus = JobStatus.QUEUED
    ingestion: Optional[Ingestion] = None
    entry: Optional[CatalogEntry] = None
    error: Optional[IngestionError] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "status": self.status.value,
            "metadata_id": self.metadata_id,
            "source_name": self.source.original_filename,
            "state": self.ingestion.state.value if self.ingestion else None,
            "failed_stage": self.error.stage.value if self.error else None,
            "retryable": self.error.retryable if self.error else None,
            "error_message": self.error_message,
            "entry": self.entry.to_dict() if self.entry else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobStats:
    """Statistics for ingestion processing."""

    def __init__(self):
        self.total_jobs_processed: int = 0
        self.successful_jobs: int = 0
        self.failed_jobs: int = 0
        self.cancelled_jobs: int = 0
        self.rejected_jobs: int = 0
        self.total_processing_time: float = 0.0
        self.encoder_usage: Dict[str, int] = {}
        self.start_time: datetime = utcnow()

    def record_job_complete(self, job: IngestJob) -> None:
        self.total_jobs_processed += 1

        if job.status == JobStatus.CANCELLED:
            self.cancelled_jobs += 1
        elif job.status == JobStatus.COMPLETED:
            self.successful_jobs += 1
        else:
            self.failed_jobs += 1

        if job.ingestion and job.ingestion.encoder:
            encoder = job.ingestion.encoder.value
            self.encoder_usage[encoder] = self.encoder_usage.get(encoder, 0) + 1

        if job.started_at and job.completed_at:
            self.total_processing_time += (job.completed_at - job.started_at).total_seconds()

    @property
    def average_processing_time(self) -> float:
        if self.successful_jobs > 0:
            return self.total_processing_time / self.successful_jobs
        return 0.0

    @property
    def uptime_seconds(self) -> float:
        return (utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_jobs_processed": self.total_jobs_processed,
            "successful_jobs": self.successful_jobs,
            "failed_jobs": self.failed_jobs,
            "cancelled_jobs": self.cancelled_jobs,
            "rejected_jobs": self.rejected_jobs,
            "average_processing_time": self.average_processing_time,
            "encoder_usage": dict(self.encoder_usage),
            "uptime_seconds": self.uptime_seconds,
        }


class IngestionQueue:
    """Fixed worker pool in front of the orchestrator with a bounded backlog."""

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        max_workers: int = 1,
        max_queued: int = 8,
        job_ttl: float = 3600.0,
        cleanup_interval: float = 300.0,
    ):
        self.orchestrator = orchestrator
        self.max_workers = max(1, max_workers)
        self.max_queued = max(1, max_queued)
        self.job_ttl = job_ttl
        self.cleanup_interval = cleanup_interval
        self.jobs: Dict[str, IngestJob] = {}
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queued)
        self.active_jobs: Dict[str, asyncio.Task] = {}
        self.stats = JobStats()
        self.status_callbacks: List[Callable[[str, JobStatus], None]] = []
        self._workers: List[asyncio.Task] = []
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the workers."""
        if self._running:
            return

        self._running = True
        await self._cleanup_orphaned_dirs()

        for i in range(self.max_workers):
            self._workers.append(asyncio.create_task(self._worker(i)))
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        logger.info(f"[Queue] Started {self.max_workers} ingestion workers (backlog {self.max_queued})")

    async def stop(self) -> None:
        """Cancel running ingestions and workers; drop the backlog."""
        self._running = False

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for job_id, task in list(self.active_jobs.items()):
            job = self.jobs.get(job_id)
            if job:
                job.status = JobStatus.CANCELLED
            task.cancel()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        # Queued jobs never reached the orchestrator, so their uploads are still on disk
        while not self.queue.empty():
            job_id = self.queue.get_nowait()
            job = self.jobs.get(job_id)
            if job and not job.is_finished:
                await self._finish_unstarted(job)

        logger.info("[Queue] Ingestion queue stopped")

    async def _worker(self, worker_id: int) -> None:
        """Worker coroutine that processes jobs from the queue."""
        logger.debug(f"[Queue] Worker {worker_id} started")

        while self._running:
            try:
                job_id = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            job = self.jobs.get(job_id)
            try:
                if job is None or job.status == JobStatus.CANCELLED:
                    continue
                await self._process_job(job)
            finally:
                self.queue.task_done()

        logger.debug(f"[Queue] Worker {worker_id} stopped")

    async def _process_job(self, job: IngestJob) -> None:
        job.status = JobStatus.PROCESSING
        job.started_at = utcnow()
        job.ingestion = Ingestion.start(job.metadata_id, job.source.original_filename)
        self._notify_status(job.id, JobStatus.PROCESSING)

        task = asyncio.create_task(
            self.orchestrator.ingest(
                job.source,
                job.metadata_id,
                subtitle_path=job.subtitle_path,
                subtitle_track=job.subtitle_track,
                ingestion=job.ingestion,
            )
        )
        self.active_jobs[job.id] = task

        try:
            job.entry = await task
            job.status = JobStatus.COMPLETED
        except asyncio.CancelledError:
            cancelled_by_request = job.status == JobStatus.CANCELLED
            job.status = JobStatus.CANCELLED
            job.error_message = "Cancelled"
            if not cancelled_by_request:
                self._complete(job)
                raise
        except IngestionError as e:
            job.status = JobStatus.FAILED
            job.error = e
            job.error_message = str(e)
        except Exception as e:
            logger.exception(f"[Queue] Unexpected error in job {job.id}: {e}")
            job.status = JobStatus.FAILED
            job.error_message = str(e)
        finally:
            self.active_jobs.pop(job.id, None)

        self._complete(job)

    def _complete(self, job: IngestJob) -> None:
        job.completed_at = utcnow()
        self.stats.record_job_complete(job)
        self._notify_status(job.id, job.status)
        job.done.set()

    async def _finish_unstarted(self, job: IngestJob) -> None:
        job.status = JobStatus.CANCELLED
        job.error_message = "Cancelled before processing"
        await cleanup_paths([job.source.path, job.subtitle_path])
        self._complete(job)

    def _notify_status(self, job_id: str, status: JobStatus) -> None:
        """Notify all registered status callbacks."""
        for callback in self.status_callbacks:
            try:
                callback(job_id, status)
            except Exception as e:
                logger.error(f"[Queue] Status callback error: {e}")

    def register_status_callback(self, callback: Callable[[str, JobStatus], None]) -> None:
        self.status_callbacks.append(callback)

    def submit(
        self,
        source: SourceAsset,
        metadata_id: str,
        subtitle_path: Optional[Union[str, Path]] = None,
        subtitle_track: Optional[int] = None,
    ) -> IngestJob:
        """
        Queue an ingestion.

        Raises:
            QueueFullError: The backlog is full. The caller still owns the files.
        """
        job = IngestJob(
            id=str(uuid.uuid4()),
            source=source,
            metadata_id=metadata_id,
            subtitle_path=Path(subtitle_path) if subtitle_path else None,
            subtitle_track=subtitle_track,
        )
        try:
            self.queue.put_nowait(job.id)
        except asyncio.QueueFull:
            self.stats.rejected_jobs += 1
            logger.warning(f"[Queue] Backlog full ({self.max_queued}), rejecting {source.original_filename}")
            raise QueueFullError(f"Ingestion backlog is full ({self.max_queued} waiting)")

        self.jobs[job.id] = job
        logger.info(f"[Queue] Queued job {job.id} for {source.original_filename} ({metadata_id})")
        return job

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> IngestJob:
        job = self.get_job(job_id)
        await asyncio.wait_for(job.done.wait(), timeout=timeout)
        return job

    def get_job(self, job_id: str) -> IngestJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued or running job. Returns False if it already finished."""
        job = self.get_job(job_id)
        if job.is_finished:
            return False

        if job.status == JobStatus.QUEUED:
            # The worker skips it when dequeued
            await self._finish_unstarted(job)
        else:
            job.status = JobStatus.CANCELLED
            task = self.active_jobs.get(job_id)
            if task:
                task.cancel()

        logger.info(f"[Queue] Cancelled job {job_id}")
        return True

    def get_queue_length(self) -> int:
        return self.queue.qsize()

    def get_active_count(self) -> int:
        return len(self.active_jobs)

    def get_all_jobs(self) -> List[IngestJob]:
        return list(self.jobs.values())

    async def _cleanup_orphaned_dirs(self) -> int:
        """Remove per-ingestion work directories left behind by a previous run."""
        work_root = Path(self.orchestrator.work_root)
        if not work_root.exists():
            return 0

        orphans = [item for item in work_root.iterdir() if item.is_dir() and item.name not in self.jobs]
        await cleanup_paths(orphans)
        if orphans:
            logger.info(f"[Cleanup] Removed {len(orphans)} orphaned work dir(s)")
        return len(orphans)

    async def _cleanup_loop(self) -> None:
        """Periodically drop finished jobs older than the retention window."""
        while self._running:
            try:
                await asyncio.sleep(self.cleanup_interval)
                await self._cleanup_stale_jobs()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Cleanup] Error in cleanup loop: {e}")

    async def _cleanup_stale_jobs(self) -> int:
        """Remove finished jobs whose completion is older than ``job_ttl``."""
        cutoff = utcnow() - timedelta(seconds=self.job_ttl)
        stale = [
            job_id for job_id, job in self.jobs.items()
            if job.is_finished and job.completed_at and job.completed_at < cutoff
        ]
        for job_id in stale:
            self.remove_job(job_id)

        if stale:
            logger.info(f"[Cleanup] Removed {len(stale)} finished job(s)")
        return len(stale)

    def remove_job(self, job_id: str) -> bool:
        """Forget a finished job. Queued or running jobs are kept."""
        job = self.jobs.get(job_id)
        if job is None or not job.is_finished:
            return False

        del self.jobs[job_id]
        logger.debug(f"[Queue] Removed job {job_id}")
        return True
