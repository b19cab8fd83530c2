"""
Byte-range reads of stored assets for seekable playback.
"""

import logging
import re
from typing import AsyncIterator, Optional, Tuple

from .errors import RangeError
from .models import CatalogEntry
from .storage.objects import ObjectStore

logger = logging.getLogger(__name__)

# Window served for open-ended "bytes=N-" requests
DEFAULT_RANGE_WINDOW = 1_000_000

_RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)", re.IGNORECASE)


def parse_range_header(
    header: Optional[str], size: int, window: int = DEFAULT_RANGE_WINDOW
) -> Optional[Tuple[int, int]]:
    """
    Map an HTTP Range header onto inclusive ``(start, end)`` byte positions.

    ``bytes=a-b`` is clamped to the object, ``bytes=a-`` yields at most
    ``window`` bytes and ``bytes=-n`` yields the last n bytes. Returns None
    when the range cannot be satisfied (the caller answers 416).
    """
    if not header or size <= 0:
        return None

    match = _RANGE_PATTERN.search(header)
    if not match:
        return None

    raw_start, raw_end = match.groups()
    if not raw_start and not raw_end:
        return None

    # Suffix range: last N bytes
    if not raw_start:
        suffix = int(raw_end)
        if suffix == 0:
            return None
        return max(size - suffix, 0), size - 1

    start = int(raw_start)
    if start >= size:
        return None

    if not raw_end:
        return start, min(start + window - 1, size - 1)

    end = min(int(raw_end), size - 1)
    if start > end:
        return None
    return start, end


class RangeStream:
    """A validated byte range of one stored object. Iterate it exactly once."""

    def __init__(
        self,
        store: ObjectStore,
        key: str,
        start: int,
        length: int,
        total_size: int,
        content_type: str,
    ):
        self._store = store
        self.key = key
        self.start = start
        self.length = length
        self.total_size = total_size
        self.content_type = content_type
        self._consumed = False

    @property
    def end(self) -> int:
        """Inclusive position of the last byte (start - 1 for an empty read)."""
        return self.start + self.length - 1

    @property
    def is_partial(self) -> bool:
        return self.length != self.total_size

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total_size}"

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError(f"RangeStream for {self.key} has already been consumed")
        self._consumed = True
        return self._store.get_range(self.key, self.start, self.length).__aiter__()

    def __repr__(self) -> str:
        return f"RangeStream({self.key!r}, {self.content_range})"


class RangeStreamReader:
    """Validates byte ranges against the stored object before any byte is read."""

    def __init__(self, store: ObjectStore):
        self.store = store

    async def read(self, key: str, offset: Optional[int] = None, length: Optional[int] = None) -> RangeStream:
        """
        Open ``length`` bytes of ``key`` from ``offset`` (defaults: whole object).

        Raises:
            NotFoundError: Unknown key.
            RangeError: The range lies outside the object.
        """
        asset = await self.store.stat(key)
        size = asset.size

        if size == 0:
            if offset is not None or length is not None:
                raise RangeError(f"{key} is empty; only a full read is possible", total_size=0)
            return RangeStream(self.store, key, 0, 0, 0, asset.content_type)

        start = 0 if offset is None else offset
        if start < 0 or start >= size:
            raise RangeError(f"Offset {start} outside {key} (size {size})", total_size=size)

        if length is None:
            length = size - start
        if length < 1:
            raise RangeError(f"Length must be positive, got {length}", total_size=size)
        if start + length > size:
            raise RangeError(
                f"Range {start}+{length} exceeds {key} (size {size})", total_size=size
            )

        logger.debug(f"[Stream] {key}: bytes {start}-{start + length - 1}/{size}")
        return RangeStream(self.store, key, start, length, size, asset.content_type)

    async def read_range(
        self, entry: CatalogEntry, offset: Optional[int] = None, length: Optional[int] = None
    ) -> RangeStream:
        """Catalog-entry form of :meth:`read`."""
        return await self.read(entry.stored_object_key, offset, length)
