"""
MediaService: wires the components together from configuration and exposes
the operations the HTTP layer (or any other caller) uses.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from .config import CinevaultConfig, get_config
from .errors import CinevaultError, QueueFullError, RangeError
from .hardware import HardwareEncoderSelector
from .ingest import IngestionOrchestrator, cleanup_paths
from .jobs import IngestionQueue, IngestJob, JobStatus
from .library import LibraryPlacementPipeline
from .metadata import MetadataClient
from .models import CatalogEntry, SourceAsset
from .process import CommandRunner
from .storage.catalog import Catalog
from .storage.objects import ObjectStore, create_object_store
from .storage.status import StatusStore, SqliteStatusStore
from .streaming import RangeStream, RangeStreamReader, parse_range_header
from .transcoding.engine import TranscodeExecutor
from .transcoding.probe import StreamProbe
from .transcoding.subtitles import SubtitleExtractor

logger = logging.getLogger(__name__)


class MediaService:
    """Facade over ingestion, playback and library placement."""

    def __init__(
        self,
        config: CinevaultConfig,
        orchestrator: IngestionOrchestrator,
        queue: IngestionQueue,
        reader: RangeStreamReader,
        library: LibraryPlacementPipeline,
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.queue = queue
        self.reader = reader
        self.library = library
        self.upload_dir = Path(config.transcoding.temp_directory) / "uploads"

    @property
    def catalog(self) -> Catalog:
        return self.orchestrator.catalog

    @property
    def store(self) -> ObjectStore:
        return self.orchestrator.store

    @property
    def selector(self) -> HardwareEncoderSelector:
        return self.orchestrator.selector

    @classmethod
    def from_config(
        cls,
        config: Optional[CinevaultConfig] = None,
        runner: Optional[CommandRunner] = None,
        selector: Optional[HardwareEncoderSelector] = None,
        store: Optional[ObjectStore] = None,
        metadata: Optional[MetadataClient] = None,
        status_store: Optional[StatusStore] = None,
    ) -> "MediaService":
        """Build every component; anything passed in replaces the configured one."""
        config = config or get_config()
        runner = runner or CommandRunner()
        selector = selector or HardwareEncoderSelector(config.hardware)
        store = store or create_object_store(config.storage)
        catalog = Catalog.from_config(config.catalog)
        metadata = metadata or MetadataClient.from_config(config.metadata, cache=catalog)

        executor = TranscodeExecutor.from_config(config, selector=selector, runner=runner)
        probe = StreamProbe(
            config.transcoding.resolve_ffprobe(),
            runner=runner,
            timeout=config.transcoding.probe_timeout,
        )
        orchestrator = IngestionOrchestrator(
            probe=probe,
            executor=executor,
            subtitles=SubtitleExtractor(executor),
            selector=selector,
            store=store,
            catalog=catalog,
            metadata=metadata,
            work_root=Path(config.transcoding.temp_directory) / "work",
        )
        queue = IngestionQueue(
            orchestrator,
            max_workers=config.transcoding.resolve_max_concurrent_jobs(),
            max_queued=config.transcoding.max_queued_jobs,
            job_ttl=config.transcoding.job_retention_seconds,
            cleanup_interval=config.transcoding.job_cleanup_interval,
        )
        library = LibraryPlacementPipeline.from_config(
            config.library,
            status_store or SqliteStatusStore(config.catalog.database_path, config.catalog.timeout),
            runner=runner,
        )
        return cls(config, orchestrator, queue, RangeStreamReader(store), library)

    async def start(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.orchestrator.work_root.mkdir(parents=True, exist_ok=True)
        await self.store.prepare()
        await self.queue.start()
        logger.info(
            f"[Service] Ready: encoders={[c.value for c in self.selector.available()]} "
            f"workers={self.queue.max_workers}"
        )

    async def stop(self) -> None:
        await self.queue.stop()

    # --- ingestion -----------------------------------------------------------------

    async def submit(
        self,
        source: SourceAsset,
        metadata_id: str,
        subtitle_path: Optional[Union[str, Path]] = None,
        subtitle_track: Optional[int] = None,
    ) -> IngestJob:
        """Queue an ingestion. Uploaded files are removed if the backlog is full."""
        try:
            return self.queue.submit(source, metadata_id, subtitle_path, subtitle_track)
        except QueueFullError:
            await cleanup_paths([source.path, subtitle_path])
            raise

    async def ingest(
        self,
        source: SourceAsset,
        metadata_id: str,
        subtitle_path: Optional[Union[str, Path]] = None,
        subtitle_track: Optional[int] = None,
    ) -> CatalogEntry:
        """Ingest and wait for the result, through the queue when it is running."""
        if not self.queue.running:
            return await self.orchestrator.ingest(source, metadata_id, subtitle_path, subtitle_track)

        job = await self.submit(source, metadata_id, subtitle_path, subtitle_track)
        await self.queue.wait(job.id)
        if job.status == JobStatus.COMPLETED and job.entry is not None:
            return job.entry
        if job.error is not None:
            raise job.error
        raise CinevaultError(f"Ingestion {job.id} {job.status.value}: {job.error_message}")

    async def extract_subtitle(self, metadata_id: str, track_index: int) -> str:
        entry = await self.catalog.get_by_metadata_id(metadata_id)
        return await self.orchestrator.extract_subtitle(entry, track_index)

    async def delete(self, metadata_id: str) -> CatalogEntry:
        return await self.orchestrator.delete(metadata_id)

    async def get_entry(self, metadata_id: str) -> CatalogEntry:
        return await self.catalog.get_by_metadata_id(metadata_id)

    # --- playback --------------------------------------------------------------------

    async def read_range(
        self, metadata_id: str, offset: Optional[int] = None, length: Optional[int] = None
    ) -> RangeStream:
        entry = await self.catalog.get_by_metadata_id(metadata_id)
        return await self.reader.read_range(entry, offset, length)

    async def open_stream(self, key: str, range_header: Optional[str]) -> Tuple[RangeStream, bool]:
        """
        Resolve an HTTP Range header against ``key``.

        Returns the stream and whether it is a partial (206) response.

        Raises:
            RangeError: The header cannot be satisfied (416).
        """
        if not range_header:
            return await self.reader.read(key), False

        asset = await self.store.stat(key)
        bounds = parse_range_header(range_header, asset.size, self.config.streaming.open_range_window)
        if bounds is None:
            raise RangeError(f"Unsatisfiable range {range_header!r}", total_size=asset.size)
        start, end = bounds
        return await self.reader.read(key, start, end - start + 1), True
