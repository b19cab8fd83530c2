"""
Persistence for Cinevault: object storage, the catalog and upload statuses.
"""

from .objects import ObjectStore, LocalObjectStore, S3ObjectStore, create_object_store
from .catalog import Catalog
from .status import StatusStore, MemoryStatusStore, SqliteStatusStore

__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "create_object_store",
    "Catalog",
    "StatusStore",
    "MemoryStatusStore",
    "SqliteStatusStore",
]
