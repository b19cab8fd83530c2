"""
Library placement pipeline: moves finished uploads into the library
directory and runs the configured sync hooks (rclone, minidlna, ...).
"""

import asyncio
import errno
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .config import HookCommand, LibraryConfig
from .models import UploadRecord, UploadStatus
from .process import CommandRunner
from .storage.status import StatusStore

logger = logging.getLogger(__name__)


def move_file(source: Path, target: Path) -> None:
    """Rename, falling back to copy + unlink across filesystems."""
    try:
        os.rename(source, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.copyfile(source, target)
        source.unlink()


class LibraryPlacementPipeline:
    """Tracks uploads in a StatusStore while placing them into the library."""

    def __init__(
        self,
        status_store: StatusStore,
        library_dir: Union[str, Path],
        hooks: Sequence[HookCommand] = (),
        command_timeout: float = 120.0,
        runner: Optional[CommandRunner] = None,
    ):
        self.status_store = status_store
        self.library_dir = Path(library_dir).resolve()
        self.hooks = list(hooks)
        self.command_timeout = command_timeout
        self.runner = runner or CommandRunner()

    @classmethod
    def from_config(
        cls, config: LibraryConfig, status_store: StatusStore, runner: Optional[CommandRunner] = None
    ) -> "LibraryPlacementPipeline":
        return cls(
            status_store=status_store,
            library_dir=config.directory,
            hooks=config.hooks,
            command_timeout=config.command_timeout,
            runner=runner,
        )

    def create_upload(self, original_name: str, stored_path: Union[str, Path]) -> UploadRecord:
        """Register an upload that is waiting on disk at ``stored_path``."""
        record = UploadRecord(
            id=str(uuid.uuid4()),
            original_name=original_name,
            stored_path=str(stored_path),
        )
        self.status_store.create(record)
        logger.info(f"[Library] Registered upload {record.id} ({original_name})")
        return record

    async def _update(self, upload_id: str, status: UploadStatus, **kwargs) -> UploadRecord:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: self.status_store.update(upload_id, status, **kwargs)
        )

    async def handle_upload(self, record: UploadRecord) -> UploadRecord:
        """
        Move the upload into the library and run the hooks.

        A failed move marks the record failed. Hook failures never fail the
        upload; they are reported in ``warnings``.
        """
        await self._update(record.id, UploadStatus.PROCESSING)

        source = Path(record.stored_path)
        target = self.library_dir / source.name
        loop = asyncio.get_running_loop()

        def place():
            self.library_dir.mkdir(parents=True, exist_ok=True)
            move_file(source, target)

        try:
            await loop.run_in_executor(None, place)
        except OSError as e:
            logger.error(f"[Library] Failed to place {source} into {self.library_dir}: {e}")
            return await self._update(record.id, UploadStatus.FAILED, message=str(e))

        await self._update(record.id, UploadStatus.PROCESSING, target_path=str(target))

        warnings = await self._run_hooks()
        message = "Upload processed successfully."
        if warnings:
            message = f"Upload placed with {len(warnings)} hook warning(s)."

        updated = await self._update(
            record.id,
            UploadStatus.COMPLETED,
            message=message,
            target_path=str(target),
            warnings=warnings,
        )
        logger.info(f"[Library] Upload {record.id} placed at {target}")
        return updated

    async def _run_hooks(self) -> List[str]:
        warnings: List[str] = []
        for hook in self.hooks:
            result = await self.runner.run(
                hook.command,
                hook.args,
                cwd=self.library_dir,
                timeout=self.command_timeout,
                tail_lines=20,
            )
            if result.ok:
                logger.info(f"[Library] Hook {hook.name} finished")
                continue

            warning = f"{hook.name}: {result.describe()}"
            detail = result.stderr.strip().splitlines()
            if detail and not result.spawn_error:
                warning = f"{warning}: {detail[-1]}"
            logger.warning(f"[Library] Hook {warning}")
            warnings.append(warning)
        return warnings
