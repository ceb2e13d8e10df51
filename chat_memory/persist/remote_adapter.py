"""
Remote blob storage adapter.

One JSON envelope per user at ``<prefix>/<sanitized_user_id>.json``.

There is no per-user lock here: two concurrent writers for the same user
each read, modify and overwrite the whole envelope, and the last upload
wins. Memories added by the losing writer are discarded.
"""

import logging
from typing import List, Optional

from chat_memory.config.settings import RemoteStorageSettings
from chat_memory.memory.recall import MemoryRecall, SEARCH_DEFAULT_LIMIT
from chat_memory.memory.schemas import Memory, MemoryFilter, MemoryStats, StoredUserMemories
from .adapter import (
    EnvelopeIntegrityError,
    EnvelopeOwnershipError,
    StorageAdapter,
    StorageError,
)
from .blob_client import BlobClient, BlobNotFoundError
from .envelope import (
    apply_filter,
    build_envelope,
    decode_envelope,
    encode_envelope,
    filter_by_ttl,
    prepare_for_write,
    sanitize_user_id,
    select,
    summarize,
)


logger = logging.getLogger(__name__)


class RemoteStorageAdapter(StorageAdapter):
    """
    Per-user JSON envelopes in a remote blob store.

    Reads that fail after retries return empty results; writes raise
    StorageError. Deleting a missing blob is a no-op.
    """

    def __init__(
        self,
        client: BlobClient,
        prefix: str = "memories",
        max_memories_per_user: int = 1000,
        ttl_days: int = 30,
        recall: Optional[MemoryRecall] = None,
    ):
        self.client = client
        self.prefix = prefix.strip("/")
        self.max_memories_per_user = max_memories_per_user
        self.ttl_days = ttl_days
        self.recall = recall or MemoryRecall()
        self._initialized = False

    @classmethod
    def from_settings(
        cls,
        settings: RemoteStorageSettings,
        max_memories_per_user: int = 1000,
        ttl_days: int = 30,
    ) -> "RemoteStorageAdapter":
        """Build the adapter and its HTTP client from remote settings."""
        client = BlobClient(
            base_url=settings.base_url,
            token=settings.token,
            max_retries=settings.max_retries,
            timeout=settings.timeout,
            retry_delay=settings.retry_delay,
        )
        return cls(
            client,
            prefix=settings.prefix,
            max_memories_per_user=max_memories_per_user,
            ttl_days=ttl_days,
        )

    async def initialize(self) -> None:
        """Probe connectivity with a bounded listing call."""
        if self._initialized:
            return
        if not self.client.token:
            raise StorageError("a blob read/write token is required for remote storage")
        try:
            await self.client.list(prefix=self.prefix, limit=1)
        except StorageError as e:
            logger.error(f"Failed to initialize remote memory storage: {e}")
            raise
        self._initialized = True
        logger.info(f"Remote memory storage ready at {self.client.base_url}/{self.prefix}")

    async def aclose(self) -> None:
        await self.client.aclose()

    def get_user_storage_path(self, user_id: str) -> str:
        return f"{self.prefix}/{sanitize_user_id(user_id)}.json"

    # ------------------------------------------------------------------
    # Envelope I/O
    # ------------------------------------------------------------------

    async def _fetch(self, user_id: str) -> Optional[StoredUserMemories]:
        """
        Download and decode the user's envelope.

        Returns:
            The envelope, or None if the blob does not exist

        Raises:
            EnvelopeIntegrityError: Corrupt or foreign envelope
            StorageError: Backend failure after retries
        """
        await self.initialize()
        try:
            raw = await self.client.get_text(self.get_user_storage_path(user_id))
        except BlobNotFoundError:
            return None
        return decode_envelope(raw, user_id)

    async def _load_active(self, user_id: str) -> List[Memory]:
        """Read path: never raises."""
        try:
            envelope = await self._fetch(user_id)
        except EnvelopeOwnershipError:
            logger.error(f"Security: blob {self.get_user_storage_path(user_id)} belongs to another user")
            return []
        except EnvelopeIntegrityError as e:
            logger.error(f"Corrupted memory envelope for user {user_id}: {e}")
            return []
        except StorageError as e:
            logger.warning(f"Failed to load memories for user {user_id}: {e}")
            return []
        return envelope.memories if envelope is not None else []

    async def _load_for_write(self, user_id: str) -> List[Memory]:
        try:
            envelope = await self._fetch(user_id)
        except EnvelopeOwnershipError as e:
            logger.error(f"Security: refusing to overwrite blob of another user at "
                         f"{self.get_user_storage_path(user_id)}")
            raise StorageError(f"envelope belongs to a different user: {e}") from e
        except EnvelopeIntegrityError as e:
            logger.error(f"Replacing corrupted memory envelope for user {user_id}: {e}")
            return []
        return envelope.memories if envelope is not None else []

    async def _store(self, user_id: str, memories: List[Memory]) -> None:
        kept = prepare_for_write(memories, self.ttl_days, self.max_memories_per_user)
        payload = encode_envelope(build_envelope(user_id, kept))
        try:
            await self.client.put(self.get_user_storage_path(user_id), payload)
        except StorageError as e:
            logger.error(f"Failed to save memories for user {user_id}: {e}")
            raise

    # ------------------------------------------------------------------
    # Writes (read-modify-write, last writer wins)
    # ------------------------------------------------------------------

    async def save_memory(self, user_id: str, memory: Memory) -> None:
        await self.save_memories(user_id, [memory])

    async def save_memories(self, user_id: str, memories: List[Memory]) -> None:
        if not memories:
            return
        current = await self._load_for_write(user_id)
        await self._store(user_id, current + list(memories))
        logger.debug(f"Saved {len(memories)} memories for user {user_id}")

    async def clear_memories(self, user_id: str, memory_filter: Optional[MemoryFilter] = None) -> None:
        current = await self._load_for_write(user_id)

        if memory_filter is None:
            await self.initialize()
            deleted = await self.client.delete(self.get_user_storage_path(user_id))
            if deleted:
                logger.info(f"Cleared all memories for user {user_id}")
            return

        matching = {m.id for m in apply_filter(current, memory_filter)}
        if matching:
            await self._store(user_id, [m for m in current if m.id not in matching])
            logger.info(f"Cleared {len(matching)} memories for user {user_id}")

    async def prune_expired_memories(self, user_id: str) -> int:
        current = await self._load_for_write(user_id)
        active = filter_by_ttl(current, self.ttl_days)
        dropped = len(current) - len(active)
        if dropped:
            await self._store(user_id, active)
            logger.info(f"Pruned {dropped} expired memories for user {user_id}")
        return dropped

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_memories(
        self,
        user_id: str,
        limit: Optional[int] = None,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        memories = await self._load_active(user_id)
        return select(memories, self.ttl_days, limit=limit, memory_filter=memory_filter)

    async def search_memories(
        self,
        user_id: str,
        query: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        candidates = await self.get_memories(user_id, memory_filter=memory_filter)
        return self.recall.search(candidates, query, limit=limit)

    async def get_user_stats(self, user_id: str) -> MemoryStats:
        memories = await self.get_memories(user_id)
        stats = summarize(memories)
        try:
            await self.initialize()
            info = await self.client.head(self.get_user_storage_path(user_id))
        except BlobNotFoundError:
            return stats
        except StorageError as e:
            logger.warning(f"Failed to read blob metadata for user {user_id}: {e}")
            return stats

        stats.storage_used = info.size
        stats.last_updated = info.uploaded_at
        return stats

    async def validate_user_access(self, user_id: str, memory_id: str) -> bool:
        memories = await self.get_memories(user_id)
        return any(m.id == memory_id for m in memories)
