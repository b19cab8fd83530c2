"""
Ingestion orchestrator.

Drives one upload from a temporary file to a catalogued, streamable object:
probe -> plan -> transcode -> store -> catalog. A catalog row is only ever
written after its object is confirmed in storage, and any object written by
a failed ingestion is deleted again before the error is surfaced.
"""

import asyncio
import logging
import re
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .errors import CinevaultError, IngestionError
from .hardware import EncoderChoice, HardwareEncoderSelector
from .metadata import MetadataClient
from .models import (
    CatalogEntry,
    IngestionStage,
    IngestionState,
    SourceAsset,
    TranscodeStrategy,
    utcnow,
)
from .storage.catalog import Catalog
from .storage.objects import ObjectStore
from .transcoding.engine import TranscodeExecutor
from .transcoding.probe import StreamProbe
from .transcoding.strategy import plan
from .transcoding.subtitles import SubtitleExtractor

logger = logging.getLogger(__name__)

# Thread pool for blocking cleanup
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cinevault_cleanup")

VIDEO_CONTENT_TYPE = "video/mp4"
SUBTITLE_CONTENT_TYPE = "application/x-subrip"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9._-]+")


def object_key_base(original_filename: str, ingestion_id: str) -> str:
    """``<lower-cased sanitised stem>-<first 8 chars of the ingestion id>``."""
    stem = Path(original_filename or "").stem.lower()
    stem = _UNSAFE_KEY_CHARS.sub("-", stem).strip("-.")
    return f"{stem or 'movie'}-{ingestion_id[:8]}"


def _remove_path(path: Path) -> None:
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.debug(f"[Cleanup] Removed {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Cleanup] Failed to remove {path}: {e}")


async def cleanup_paths(paths: Iterable[Optional[Union[str, Path]]]) -> None:
    """Remove files and directories. Missing paths are not an error."""
    targets = [Path(p) for p in paths if p]
    if not targets:
        return
    loop = asyncio.get_running_loop()

    def do_cleanup():
        for target in targets:
            _remove_path(target)

    await loop.run_in_executor(_executor, do_cleanup)


async def _settled(awaitable):
    """
    Await ``awaitable``; if the caller is cancelled meanwhile, let it finish first.

    Catalog and store writes run in worker threads that keep going after a
    cancel, so their outcome has to be known before anything is rolled back.
    """
    future = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        if not future.cancelled():
            future.exception()  # retrieved; the cancellation is what propagates
        raise


def _committed(future: "asyncio.Future") -> bool:
    return future.done() and not future.cancelled() and future.exception() is None


@dataclass
class Ingestion:
    """State of one ingest call, for logging and job status."""
    id: str
    metadata_id: str
    source_name: str
    state: IngestionState = IngestionState.RECEIVED
    failed_stage: Optional[IngestionStage] = None
    error: Optional[str] = None
    strategy: Optional[TranscodeStrategy] = None
    encoder: Optional[EncoderChoice] = None
    written_keys: List[str] = field(default_factory=list)
    history: List[Tuple[IngestionState, datetime]] = field(default_factory=list)

    @classmethod
    def start(cls, metadata_id: str, source_name: str) -> "Ingestion":
        ingestion = cls(id=uuid.uuid4().hex, metadata_id=metadata_id, source_name=source_name)
        ingestion.history.append((IngestionState.RECEIVED, utcnow()))
        return ingestion

    @property
    def is_terminal(self) -> bool:
        return self.state in (IngestionState.COMPLETED, IngestionState.FAILED)

    def transition(self, state: IngestionState) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Ingestion {self.id} already {self.state.value}")
        self.state = state
        self.history.append((state, utcnow()))
        logger.info(f"[Ingest] {self.id[:8]} {self.source_name}: {state.value}")

    def fail(self, stage: IngestionStage, cause: BaseException) -> IngestionError:
        self.failed_stage = stage
        self.error = str(cause)
        if not self.is_terminal:
            self.state = IngestionState.FAILED
            self.history.append((IngestionState.FAILED, utcnow()))
        logger.error(f"[Ingest] {self.id[:8]} {self.source_name}: {stage.value} failed: {cause}")
        return IngestionError(stage, cause)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "metadata_id": self.metadata_id,
            "source_name": self.source_name,
            "state": self.state.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "error": self.error,
            "encoder": self.encoder.value if self.encoder else None,
        }


class IngestionOrchestrator:
    """Runs the ingestion saga and the follow-up subtitle/delete operations."""

    def __init__(
        self,
        probe: StreamProbe,
        executor: TranscodeExecutor,
        subtitles: SubtitleExtractor,
        selector: HardwareEncoderSelector,
        store: ObjectStore,
        catalog: Catalog,
        metadata: MetadataClient,
        work_root: Union[str, Path],
    ):
        self.probe = probe
        self.executor = executor
        self.subtitles = subtitles
        self.selector = selector
        self.store = store
        self.catalog = catalog
        self.metadata = metadata
        self.work_root = Path(work_root)

    async def ingest(
        self,
        source: SourceAsset,
        metadata_id: str,
        subtitle_path: Optional[Union[str, Path]] = None,
        subtitle_track: Optional[int] = None,
        ingestion: Optional[Ingestion] = None,
    ) -> CatalogEntry:
        """
        Ingest ``source`` as the movie identified by ``metadata_id``.

        ``subtitle_path`` is an uploaded SRT stored as-is; otherwise
        ``subtitle_track`` names a subtitle stream of the source to extract.
        The source file, the subtitle upload and the work directory are
        always removed, whatever the outcome.

        Raises:
            IngestionError: Tagged with the stage that failed.
        """
        ingestion = ingestion or Ingestion.start(metadata_id, source.original_filename)
        work_dir = self.work_root / ingestion.id

        try:
            return await self._run(ingestion, source, work_dir, subtitle_path, subtitle_track)
        finally:
            await cleanup_paths([source.path, subtitle_path, work_dir])

    async def _run(
        self,
        ingestion: Ingestion,
        source: SourceAsset,
        work_dir: Path,
        subtitle_path: Optional[Union[str, Path]],
        subtitle_track: Optional[int],
    ) -> CatalogEntry:
        # Probing
        ingestion.transition(IngestionState.PROBING)
        try:
            profile = await self.probe.probe(source.path)
        except CinevaultError as e:
            raise ingestion.fail(IngestionStage.PROBE, e) from e

        # Transcoding
        ingestion.transition(IngestionState.TRANSCODING)
        strategy = plan(profile)
        choice = self.selector.select()
        ingestion.strategy = strategy
        ingestion.encoder = choice

        try:
            work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ingestion.fail(IngestionStage.TRANSCODE, e) from e
        video_output = work_dir / "output.mp4"
        subtitle_file: Optional[Path] = Path(subtitle_path) if subtitle_path else None

        jobs = [self.executor.transcode(source.path, strategy, choice, video_output)]
        if subtitle_file is None and subtitle_track is not None:
            jobs.append(
                self.subtitles.extract(source.path, subtitle_track, work_dir / "subtitle.srt", profile)
            )

        results = await asyncio.gather(*jobs, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                if isinstance(result, (CinevaultError, OSError)):
                    raise ingestion.fail(IngestionStage.TRANSCODE, result) from result
                raise result
        if len(results) > 1:
            subtitle_file = results[1]

        # Storing and cataloging: every key written so far is undone on failure
        try:
            return await self._store_and_catalog(ingestion, source, video_output, subtitle_file)
        except BaseException:
            await self._compensate(ingestion)
            raise

    async def _store_and_catalog(
        self,
        ingestion: Ingestion,
        source: SourceAsset,
        video_output: Path,
        subtitle_file: Optional[Path],
    ) -> CatalogEntry:
        ingestion.transition(IngestionState.STORING)
        base = object_key_base(source.original_filename, ingestion.id)
        video_key = f"{base}.mp4"
        subtitle_key: Optional[str] = None

        # Keys are recorded before the write so a put that lands after a cancel is still undone
        try:
            ingestion.written_keys.append(video_key)
            await _settled(self.store.put(video_key, video_output, VIDEO_CONTENT_TYPE))
            if subtitle_file is not None:
                subtitle_key = f"{base}.srt"
                ingestion.written_keys.append(subtitle_key)
                await _settled(self.store.put(subtitle_key, subtitle_file, SUBTITLE_CONTENT_TYPE))
        except (CinevaultError, OSError) as e:
            raise ingestion.fail(IngestionStage.STORE, e) from e

        ingestion.transition(IngestionState.CATALOGING)
        try:
            metadata = await self.metadata.fetch(ingestion.metadata_id)
        except CinevaultError as e:
            raise ingestion.fail(IngestionStage.CATALOG, e) from e

        insert = asyncio.ensure_future(
            self.catalog.insert(
                CatalogEntry(
                    title=metadata.title,
                    description=metadata.description,
                    stored_object_key=video_key,
                    subtitle_object_key=subtitle_key,
                    metadata_id=ingestion.metadata_id,
                )
            )
        )
        try:
            entry = await _settled(insert)
        except asyncio.CancelledError:
            if _committed(insert):
                await self._withdraw_row(ingestion)
            raise
        except CinevaultError as e:
            raise ingestion.fail(IngestionStage.CATALOG, e) from e

        ingestion.transition(IngestionState.COMPLETED)
        return entry

    async def _withdraw_row(self, ingestion: Ingestion) -> None:
        """Delete the row a cancelled ingestion committed, so its objects can go too."""
        logger.warning(f"[Ingest] {ingestion.id[:8]} cancelled after cataloging: removing row {ingestion.metadata_id}")
        try:
            await _settled(self.catalog.delete_by_metadata_id(ingestion.metadata_id))
        except CinevaultError as e:
            # The row stays, so its objects must stay with it
            logger.error(f"[Ingest] {ingestion.id[:8]} could not remove row {ingestion.metadata_id}: {e}")
            ingestion.written_keys.clear()

    async def _compensate(self, ingestion: Ingestion) -> None:
        """Delete every object this ingestion wrote, newest first."""
        for key in reversed(ingestion.written_keys):
            logger.warning(f"[Ingest] {ingestion.id[:8]} compensating: removing {key}")
            await self.store.remove(key)
        ingestion.written_keys.clear()

    async def extract_subtitle(self, entry: CatalogEntry, track_index: int) -> str:
        """
        Extract subtitle stream ``track_index`` from a stored asset as SRT.

        Stores ``<stored stem>.<track>.srt``, points the catalog row at it and
        returns the new key. A previous subtitle object is removed once the
        catalog no longer references it.
        """
        work_dir = self.work_root / f"subtitle-{uuid.uuid4().hex[:12]}"
        try:
            local_copy = await self.store.download(
                entry.stored_object_key, work_dir / Path(entry.stored_object_key).name
            )
            profile = await self.probe.probe(local_copy)
            srt_file = await self.subtitles.extract(
                local_copy, track_index, work_dir / f"track-{track_index}.srt", profile
            )

            subtitle_key = f"{Path(entry.stored_object_key).stem}.{track_index}.srt"
            previous_key = entry.subtitle_object_key
            update: Optional[asyncio.Future] = None
            try:
                await _settled(self.store.put(subtitle_key, srt_file, SUBTITLE_CONTENT_TYPE))
                update = asyncio.ensure_future(self.catalog.set_subtitle_key(entry.id, subtitle_key))
                await _settled(update)
            finally:
                # Drop whichever key the row does not reference; same key means overwritten in place
                unreferenced = previous_key if update is not None and _committed(update) else subtitle_key
                if unreferenced and subtitle_key != previous_key:
                    await self.store.remove(unreferenced)

            logger.info(f"[Ingest] Subtitle track {track_index} of {entry.metadata_id} stored as {subtitle_key}")
            return subtitle_key
        finally:
            await cleanup_paths([work_dir])

    async def delete(self, metadata_id: str) -> CatalogEntry:
        """Remove the catalog row, then its objects."""
        entry = await self.catalog.delete_by_metadata_id(metadata_id)
        await self.store.remove(entry.stored_object_key)
        if entry.subtitle_object_key:
            await self.store.remove(entry.subtitle_object_key)
        logger.info(f"[Ingest] Deleted {metadata_id} ({entry.stored_object_key})")
        return entry
