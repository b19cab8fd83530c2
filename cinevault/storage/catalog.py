"""
Relational catalog of stored movies, plus the metadata lookup cache.
"""

import asyncio
import json
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..config import CatalogConfig
from ..errors import CatalogError, NotFoundError
from ..models import CatalogEntry, MovieMetadata, utcnow
from .db import get_connection, initialize_database

logger = logging.getLogger(__name__)

# Thread pool for blocking database calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="cinevault_db")


def _row_to_entry(row: sqlite3.Row) -> CatalogEntry:
    return CatalogEntry(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        stored_object_key=row["stored_object_key"],
        subtitle_object_key=row["subtitle_object_key"],
        metadata_id=row["metadata_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class Catalog:
    """SQLite-backed catalog. ``metadata_id`` is unique per entry."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._initialized = False

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "Catalog":
        return cls(config.database_path, config.timeout)

    def _connect(self):
        if not self._initialized:
            initialize_database(self.db_path, self.timeout)
            self._initialized = True
        return get_connection(self.db_path, self.timeout)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, func, *args)

    # --- catalog entries -------------------------------------------------------

    def insert_sync(self, entry: CatalogEntry) -> CatalogEntry:
        created_at = entry.created_at or utcnow()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO catalog_entries
                        (title, description, stored_object_key, subtitle_object_key, metadata_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.title,
                        entry.description,
                        entry.stored_object_key,
                        entry.subtitle_object_key,
                        entry.metadata_id,
                        created_at.isoformat(),
                    ),
                )
                entry_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise CatalogError(
                f"Catalog entry for metadata id {entry.metadata_id} already exists",
                constraint_violation=True,
            ) from e
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog insert failed: {e}") from e

        return CatalogEntry(
            id=entry_id,
            title=entry.title,
            description=entry.description,
            stored_object_key=entry.stored_object_key,
            subtitle_object_key=entry.subtitle_object_key,
            metadata_id=entry.metadata_id,
            created_at=created_at,
        )

    def _fetch_one(self, where: str, value) -> CatalogEntry:
        try:
            with self._connect() as conn:
                row = conn.execute(f"SELECT * FROM catalog_entries WHERE {where} = ?", (value,)).fetchone()
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog lookup failed: {e}") from e
        if row is None:
            raise NotFoundError(f"No catalog entry with {where} {value}")
        return _row_to_entry(row)

    def get_sync(self, entry_id: int) -> CatalogEntry:
        return self._fetch_one("id", entry_id)

    def get_by_metadata_id_sync(self, metadata_id: str) -> CatalogEntry:
        return self._fetch_one("metadata_id", metadata_id)

    def list_entries_sync(self, limit: int = 100, offset: int = 0) -> List[CatalogEntry]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM catalog_entries ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog listing failed: {e}") from e
        return [_row_to_entry(row) for row in rows]

    def set_subtitle_key_sync(self, entry_id: int, subtitle_key: Optional[str]) -> CatalogEntry:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE catalog_entries SET subtitle_object_key = ? WHERE id = ?",
                    (subtitle_key, entry_id),
                )
                updated = cursor.rowcount
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog update failed: {e}") from e
        if not updated:
            raise NotFoundError(f"No catalog entry with id {entry_id}")
        return self.get_sync(entry_id)

    def delete_by_metadata_id_sync(self, metadata_id: str) -> CatalogEntry:
        entry = self.get_by_metadata_id_sync(metadata_id)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM catalog_entries WHERE id = ?", (entry.id,))
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog delete failed: {e}") from e
        return entry

    async def insert(self, entry: CatalogEntry) -> CatalogEntry:
        stored = await self._run(self.insert_sync, entry)
        logger.info(f"[Catalog] Inserted entry {stored.id} for {stored.metadata_id}")
        return stored

    async def get(self, entry_id: int) -> CatalogEntry:
        return await self._run(self.get_sync, entry_id)

    async def get_by_metadata_id(self, metadata_id: str) -> CatalogEntry:
        return await self._run(self.get_by_metadata_id_sync, metadata_id)

    async def list_entries(self, limit: int = 100, offset: int = 0) -> List[CatalogEntry]:
        return await self._run(self.list_entries_sync, limit, offset)

    async def set_subtitle_key(self, entry_id: int, subtitle_key: Optional[str]) -> CatalogEntry:
        return await self._run(self.set_subtitle_key_sync, entry_id, subtitle_key)

    async def delete_by_metadata_id(self, metadata_id: str) -> CatalogEntry:
        entry = await self._run(self.delete_by_metadata_id_sync, metadata_id)
        logger.info(f"[Catalog] Deleted entry {entry.id} for {metadata_id}")
        return entry

    # --- metadata cache ----------------------------------------------------------

    def get_cached_metadata_sync(self, identifier: str) -> Optional[MovieMetadata]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM movie_metadata WHERE identifier = ?", (identifier,)
                ).fetchone()
        except sqlite3.Error as e:
            raise CatalogError(f"Metadata cache lookup failed: {e}") from e
        if row is None:
            return None
        return MovieMetadata(
            identifier=row["identifier"],
            title=row["title"],
            description=row["description"],
            runtime_text=row["runtime_text"],
            year=row["year"],
            raw=json.loads(row["raw_json"]),
        )

    def cache_metadata_sync(self, metadata: MovieMetadata) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO movie_metadata
                        (identifier, title, description, runtime_text, year, raw_json, fetched_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(identifier) DO UPDATE SET
                        title = excluded.title,
                        description = excluded.description,
                        runtime_text = excluded.runtime_text,
                        year = excluded.year,
                        raw_json = excluded.raw_json,
                        fetched_at = excluded.fetched_at
                    """,
                    (
                        metadata.identifier,
                        metadata.title,
                        metadata.description,
                        metadata.runtime_text,
                        metadata.year,
                        json.dumps(metadata.raw),
                        utcnow().isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise CatalogError(f"Metadata cache write failed: {e}") from e

    async def get_cached_metadata(self, identifier: str) -> Optional[MovieMetadata]:
        return await self._run(self.get_cached_metadata_sync, identifier)

    async def cache_metadata(self, metadata: MovieMetadata) -> None:
        await self._run(self.cache_metadata_sync, metadata)
