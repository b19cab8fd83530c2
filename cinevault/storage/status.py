"""
Upload status stores for the library placement pipeline.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import CatalogError, NotFoundError
from ..models import UploadRecord, UploadStatus, utcnow
from .db import get_connection, initialize_database

logger = logging.getLogger(__name__)


class StatusStore(ABC):
    """Keeps UploadRecords keyed by id."""

    @abstractmethod
    def create(self, record: UploadRecord) -> UploadRecord:
        ...

    @abstractmethod
    def get(self, upload_id: str) -> UploadRecord:
        """Raise NotFoundError for unknown ids."""

    @abstractmethod
    def list(self) -> List[UploadRecord]:
        ...

    @abstractmethod
    def _save(self, record: UploadRecord) -> None:
        ...

    def update(
        self,
        upload_id: str,
        status: UploadStatus,
        message: Optional[str] = None,
        target_path: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> UploadRecord:
        """Set the status; message, target path and warnings only change when given."""
        current = self.get(upload_id)
        updated = replace(
            current,
            status=status,
            message=message if message is not None else current.message,
            target_path=target_path if target_path is not None else current.target_path,
            warnings=list(warnings) if warnings is not None else list(current.warnings),
            updated_at=utcnow(),
        )
        self._save(updated)
        logger.debug(f"[Uploads] {upload_id} -> {status.value}")
        return updated


class MemoryStatusStore(StatusStore):
    """Process-local store; statuses are lost on restart."""

    def __init__(self):
        self._records: Dict[str, UploadRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: UploadRecord) -> UploadRecord:
        with self._lock:
            self._records[record.id] = record
        return record

    def get(self, upload_id: str) -> UploadRecord:
        with self._lock:
            record = self._records.get(upload_id)
        if record is None:
            raise NotFoundError(f"Upload {upload_id} not found")
        return record

    def list(self) -> List[UploadRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def _save(self, record: UploadRecord) -> None:
        with self._lock:
            self._records[record.id] = record


def _row_to_record(row: sqlite3.Row) -> UploadRecord:
    return UploadRecord(
        id=row["id"],
        original_name=row["original_name"],
        stored_path=row["stored_path"],
        target_path=row["target_path"],
        status=UploadStatus(row["status"]),
        message=row["message"],
        warnings=json.loads(row["warnings_json"] or "[]"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteStatusStore(StatusStore):
    """Durable store sharing the catalog database file."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        initialize_database(self.db_path, self.timeout)

    def _write(self, record: UploadRecord) -> None:
        try:
            with get_connection(self.db_path, self.timeout) as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO upload_records
                        (id, original_name, stored_path, target_path, status, message,
                         warnings_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.original_name,
                        record.stored_path,
                        record.target_path,
                        record.status.value,
                        record.message,
                        json.dumps(record.warnings),
                        record.created_at.isoformat(),
                        record.updated_at.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise CatalogError(f"Failed to save upload {record.id}: {e}") from e

    def create(self, record: UploadRecord) -> UploadRecord:
        self._write(record)
        return record

    def get(self, upload_id: str) -> UploadRecord:
        try:
            with get_connection(self.db_path, self.timeout) as conn:
                row = conn.execute("SELECT * FROM upload_records WHERE id = ?", (upload_id,)).fetchone()
        except sqlite3.Error as e:
            raise CatalogError(f"Failed to load upload {upload_id}: {e}") from e
        if row is None:
            raise NotFoundError(f"Upload {upload_id} not found")
        return _row_to_record(row)

    def list(self) -> List[UploadRecord]:
        try:
            with get_connection(self.db_path, self.timeout) as conn:
                rows = conn.execute("SELECT * FROM upload_records ORDER BY created_at DESC").fetchall()
        except sqlite3.Error as e:
            raise CatalogError(f"Failed to list uploads: {e}") from e
        return [_row_to_record(row) for row in rows]

    def _save(self, record: UploadRecord) -> None:
        self._write(record)
