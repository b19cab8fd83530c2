"""
Error taxonomy for Cinevault.

Every component raises a subclass of CinevaultError. The ``retryable`` flag
tells callers whether asking the user to try again can help (storage or
catalog unavailable) or whether the input must be rejected (bad media,
unsupported codec, duplicate identifier).
"""

from typing import Optional


class CinevaultError(Exception):
    """Base class for all Cinevault errors."""

    retryable: bool = False


class ProbeError(CinevaultError):
    """ffprobe could not be started, failed, or produced unparsable output."""


class TranscodeSpawnError(CinevaultError):
    """The encoder executable could not be started."""


class TranscodeError(CinevaultError):
    """The encoder ran but did not produce a usable output."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr_tail: str = "",
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        self.timed_out = timed_out


class StoreError(CinevaultError):
    """Object storage read or write failed."""

    retryable = True


class CatalogError(CinevaultError):
    """Catalog insert/update failed."""

    def __init__(self, message: str, constraint_violation: bool = False):
        super().__init__(message)
        self.constraint_violation = constraint_violation

    @property
    def retryable(self) -> bool:
        return not self.constraint_violation


class MetadataError(CinevaultError):
    """The metadata service could not be reached or answered garbage."""

    retryable = True


class NotFoundError(CinevaultError):
    """Missing metadata record, stored object, catalog row or track."""


class RangeError(CinevaultError):
    """Requested byte range lies outside the stored object."""

    def __init__(self, message: str, total_size: Optional[int] = None):
        super().__init__(message)
        self.total_size = total_size


class QueueFullError(CinevaultError):
    """The ingestion backlog is full; try again later."""

    retryable = True


class IngestionError(CinevaultError):
    """Single error surfaced by the orchestrator, tagged with the failing stage."""

    def __init__(self, stage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        stage_name = getattr(stage, "value", stage)
        super().__init__(f"{stage_name} failed: {cause}")

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.cause, "retryable", False))
