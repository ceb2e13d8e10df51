"""
Persistence layer for per-user memory envelopes.

Provides:
- Storage adapter contract and error types
- Envelope helpers (sanitize, TTL, filter, evict, encode/decode)
- Keyed asyncio locks for per-user write serialization
- Local filesystem adapter (locked, atomic replace)
- Remote blob adapter (retry/backoff, last writer wins)
"""

from .adapter import (
    EnvelopeIntegrityError,
    EnvelopeOwnershipError,
    InvalidUserIdError,
    LockTimeoutError,
    StorageAdapter,
    StorageError,
)
from .envelope import sanitize_user_id
from .locks import KeyedLock
from .local_adapter import LocalStorageAdapter
from .blob_client import BlobClient, BlobInfo, BlobNotFoundError, BlobStoreError
from .remote_adapter import RemoteStorageAdapter

__all__ = [
    "EnvelopeIntegrityError",
    "EnvelopeOwnershipError",
    "InvalidUserIdError",
    "LockTimeoutError",
    "StorageAdapter",
    "StorageError",
    "sanitize_user_id",
    "KeyedLock",
    "LocalStorageAdapter",
    "BlobClient",
    "BlobInfo",
    "BlobNotFoundError",
    "BlobStoreError",
    "RemoteStorageAdapter",
]
