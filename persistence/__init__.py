from __future__ import annotations

from .errors import (
    ConflictError,
    CorruptionError,
    NetworkError,
    PersistenceError,
    StorageQuotaError,
    ValidationError,
)
from .interfaces import KeyValueStore, RemoteRecord, RemoteStore
from .local_cache import DirtyRecord, LocalFallbackCache
from .memory_store import MemoryKeyValueStore
from .disk_store import DiskJsonDocumentStore, DiskKeyValueStore
from .quota import QuotaAwareStore, StoragePriority, StorageResult
from .remote import RemoteAdapter, RemoteDocument
from .repositories import AsyncDiskRemoteStore, DiskRemoteDocumentRepository
from .version_history import RetentionPolicy, VersionHistoryStore, VersionSnapshot

__all__ = [
    "AsyncDiskRemoteStore",
    "ConflictError",
    "CorruptionError",
    "DirtyRecord",
    "DiskJsonDocumentStore",
    "DiskKeyValueStore",
    "DiskRemoteDocumentRepository",
    "KeyValueStore",
    "LocalFallbackCache",
    "MemoryKeyValueStore",
    "NetworkError",
    "PersistenceError",
    "QuotaAwareStore",
    "RemoteAdapter",
    "RemoteDocument",
    "RemoteRecord",
    "RemoteStore",
    "RetentionPolicy",
    "StoragePriority",
    "StorageQuotaError",
    "StorageResult",
    "ValidationError",
    "VersionHistoryStore",
    "VersionSnapshot",
]
