"""
Storage adapter contract.

Every backend stores one envelope per user and implements the same
asynchronous operations. Shared behaviour (TTL, filtering, eviction,
envelope encoding) lives in free functions in ``envelope.py`` and is reused
by composition.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from chat_memory.memory.schemas import Memory, MemoryFilter, MemoryStats


class StorageError(Exception):
    """Backend failure surfaced by a storage adapter."""


class LockTimeoutError(StorageError):
    """A per-user lock could not be acquired within the configured timeout."""


class EnvelopeIntegrityError(StorageError):
    """A stored envelope is unreadable or belongs to a different user."""


class EnvelopeOwnershipError(EnvelopeIntegrityError):
    """A stored envelope carries a different user id than requested."""


class InvalidUserIdError(StorageError, ValueError):
    """A user id cannot be mapped to a storage location."""


class StorageAdapter(ABC):
    """Abstract interface for per-user memory storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend. Must be idempotent."""

    @abstractmethod
    async def save_memory(self, user_id: str, memory: Memory) -> None:
        """Append one memory to the user's envelope."""

    @abstractmethod
    async def save_memories(self, user_id: str, memories: List[Memory]) -> None:
        """Append a batch with a single load and a single write-back."""

    @abstractmethod
    async def get_memories(
        self,
        user_id: str,
        limit: Optional[int] = None,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        """Return active memories, most recent first."""

    @abstractmethod
    async def search_memories(
        self,
        user_id: str,
        query: str,
        limit: int = 10,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        """Lexical search over content, tags and context."""

    @abstractmethod
    async def clear_memories(self, user_id: str, memory_filter: Optional[MemoryFilter] = None) -> None:
        """Delete the envelope, or only the memories matching a filter."""

    @abstractmethod
    async def prune_expired_memories(self, user_id: str) -> int:
        """Rewrite the envelope without expired memories; return how many were dropped."""

    @abstractmethod
    async def get_user_stats(self, user_id: str) -> MemoryStats:
        """Counts and storage figures for one user."""

    @abstractmethod
    async def validate_user_access(self, user_id: str, memory_id: str) -> bool:
        """True iff the memory currently exists in the user's envelope."""

    @abstractmethod
    def get_user_storage_path(self, user_id: str) -> str:
        """Backend-specific location of the user's envelope (diagnostics only)."""
