"""
Object storage backends: a local directory tree or an S3-compatible bucket.

Backends implement small blocking primitives; the public coroutine API runs
them on a shared thread pool so the event loop never blocks on disk or
network I/O.
"""

import asyncio
import logging
import mimetypes
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Union

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from ..config import StorageConfig
from ..errors import NotFoundError, StoreError
from ..models import StoredAsset

logger = logging.getLogger(__name__)

# Thread pool for blocking storage calls
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="cinevault_store")

DEFAULT_CHUNK_SIZE = 64 * 1024


def guess_content_type(key: str) -> str:
    return mimetypes.guess_type(key)[0] or "application/octet-stream"


class ObjectStore(ABC):
    """Key/value blob store with partial reads."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size

    # --- blocking primitives -------------------------------------------------

    @abstractmethod
    def prepare_sync(self) -> None:
        """Create the bucket/root if needed."""

    @abstractmethod
    def put_sync(self, key: str, path: Path, content_type: str) -> StoredAsset:
        """Upload ``path`` under ``key`` and return the confirmed object."""

    @abstractmethod
    def stat_sync(self, key: str) -> StoredAsset:
        """Raise NotFoundError for unknown keys."""

    @abstractmethod
    def open_range_sync(self, key: str, offset: int, length: int) -> BinaryIO:
        """Return a readable stream of exactly ``length`` bytes from ``offset``."""

    @abstractmethod
    def remove_sync(self, key: str) -> None:
        """Delete ``key``; raise StoreError on failure, ignore unknown keys."""

    @abstractmethod
    def download_sync(self, key: str, destination: Path) -> Path:
        """Copy the whole object to a local file."""

    # --- async API -------------------------------------------------------------

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, func, *args)

    async def prepare(self) -> None:
        await self._run(self.prepare_sync)

    async def put(self, key: str, path: Union[str, Path], content_type: Optional[str] = None) -> StoredAsset:
        content_type = content_type or guess_content_type(key)
        asset = await self._run(self.put_sync, key, Path(path), content_type)
        logger.info(f"[Store] Put {key} ({asset.size} bytes)")
        return asset

    async def stat(self, key: str) -> StoredAsset:
        return await self._run(self.stat_sync, key)

    async def exists(self, key: str) -> bool:
        try:
            await self.stat(key)
            return True
        except NotFoundError:
            return False

    async def get_range(self, key: str, offset: int, length: int) -> AsyncIterator[bytes]:
        """Yield ``length`` bytes starting at ``offset`` in chunk_size pieces."""
        if length <= 0:
            return
        stream = await self._run(self.open_range_sync, key, offset, length)
        try:
            remaining = length
            while remaining > 0:
                chunk = await self._run(stream.read, min(self.chunk_size, remaining))
                if not chunk:
                    raise StoreError(f"Object {key} ended {remaining} bytes early")
                remaining -= len(chunk)
                yield chunk
        finally:
            await self._run(stream.close)

    async def remove(self, key: str) -> bool:
        """Best-effort delete. Returns False (and logs) instead of raising."""
        try:
            await self._run(self.remove_sync, key)
            logger.info(f"[Store] Removed {key}")
            return True
        except StoreError as e:
            logger.warning(f"[Store] Failed to remove {key}: {e}")
            return False

    async def download(self, key: str, destination: Union[str, Path]) -> Path:
        return await self._run(self.download_sync, key, Path(destination))


class LocalObjectStore(ObjectStore):
    """Objects as files under ``<root>/<bucket>/``."""

    def __init__(self, root: Union[str, Path], bucket: str = "movies", chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(chunk_size)
        self.base = Path(root) / bucket

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise StoreError(f"Invalid object key: {key!r}")
        return self.base / key

    def prepare_sync(self) -> None:
        self.base.mkdir(parents=True, exist_ok=True)

    def put_sync(self, key: str, path: Path, content_type: str) -> StoredAsset:
        target = self._path_for(key)
        staging = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, staging)
            # Atomic replace: readers see the old object or the new one
            os.replace(staging, target)
        except OSError as e:
            staging.unlink(missing_ok=True)
            raise StoreError(f"Failed to store {key}: {e}") from e
        return self.stat_sync(key)

    def stat_sync(self, key: str) -> StoredAsset:
        path = self._path_for(key)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            raise NotFoundError(f"Object not found: {key}")
        except OSError as e:
            raise StoreError(f"Failed to stat {key}: {e}") from e
        return StoredAsset(key=key, size=size, content_type=guess_content_type(key))

    def open_range_sync(self, key: str, offset: int, length: int) -> BinaryIO:
        path = self._path_for(key)
        try:
            stream = open(path, "rb")
        except FileNotFoundError:
            raise NotFoundError(f"Object not found: {key}")
        except OSError as e:
            raise StoreError(f"Failed to open {key}: {e}") from e
        stream.seek(offset)
        return stream

    def remove_sync(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to remove {key}: {e}") from e

    def download_sync(self, key: str, destination: Path) -> Path:
        source = self._path_for(key)
        if not source.exists():
            raise NotFoundError(f"Object not found: {key}")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
        except OSError as e:
            raise StoreError(f"Failed to download {key}: {e}") from e
        return destination


_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in _MISSING_CODES


class S3ObjectStore(ObjectStore):
    """S3-compatible bucket (AWS S3, MinIO) through boto3."""

    def __init__(self, client, bucket: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(chunk_size)
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_config(cls, config: StorageConfig) -> "S3ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            region_name=config.region_name,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
        )
        return cls(client, config.bucket, config.read_chunk_size)

    def prepare_sync(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            if not _is_missing(e):
                raise StoreError(f"Bucket {self.bucket} is not accessible: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Object storage unreachable: {e}") from e
        try:
            self.client.create_bucket(Bucket=self.bucket)
            logger.info(f"[Store] Created bucket {self.bucket}")
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Failed to create bucket {self.bucket}: {e}") from e

    def put_sync(self, key: str, path: Path, content_type: str) -> StoredAsset:
        try:
            self.client.upload_file(
                str(path), self.bucket, key, ExtraArgs={"ContentType": content_type}
            )
        except (ClientError, BotoCoreError, Boto3Error, OSError) as e:
            raise StoreError(f"Failed to upload {key}: {e}") from e
        # Confirm the write before anyone references the key
        return self.stat_sync(key)

    def stat_sync(self, key: str) -> StoredAsset:
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(f"Object not found: {key}")
            raise StoreError(f"Failed to stat {key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to stat {key}: {e}") from e
        return StoredAsset(
            key=key,
            size=int(head.get("ContentLength", 0)),
            content_type=head.get("ContentType") or guess_content_type(key),
        )

    def open_range_sync(self, key: str, offset: int, length: int) -> BinaryIO:
        try:
            response = self.client.get_object(
                Bucket=self.bucket, Key=key, Range=f"bytes={offset}-{offset + length - 1}"
            )
        except ClientError as e:
            if _is_missing(e):
                raise NotFoundError(f"Object not found: {key}")
            raise StoreError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to read {key}: {e}") from e
        return response["Body"]

    def remove_sync(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Failed to remove {key}: {e}") from e

    def download_sync(self, key: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.client.download_file(self.bucket, key, str(destination))
        except ClientError as e:
            destination.unlink(missing_ok=True)
            if _is_missing(e):
                raise NotFoundError(f"Object not found: {key}")
            raise StoreError(f"Failed to download {key}: {e}") from e
        except (BotoCoreError, Boto3Error) as e:
            destination.unlink(missing_ok=True)
            raise StoreError(f"Failed to download {key}: {e}") from e
        return destination


def create_object_store(config: StorageConfig) -> ObjectStore:
    """Build the backend named by ``storage.backend``."""
    if config.backend == "s3":
        logger.info(f"[Store] Using S3 bucket {config.bucket} at {config.endpoint_url or 'AWS'}")
        return S3ObjectStore.from_config(config)
    logger.info(f"[Store] Using local object store at {config.local_root}")
    return LocalObjectStore(config.local_root, config.bucket, config.read_chunk_size)
