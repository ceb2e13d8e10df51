"""
Filesystem storage adapter.

One directory per sanitized user id holding ``memories.json``:

    <base_path>/<sanitized_user_id>/memories.json

Writers for one user are serialized by an in-process keyed lock and each
write lands through a temp file plus ``os.replace``, so readers see either
the previous or the new envelope, never a partial one. Reads take no lock.
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from chat_memory.memory.recall import MemoryRecall, SEARCH_DEFAULT_LIMIT
from chat_memory.memory.schemas import Memory, MemoryFilter, MemoryStats, StoredUserMemories
from .adapter import (
    EnvelopeIntegrityError,
    EnvelopeOwnershipError,
    StorageAdapter,
    StorageError,
)
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
from .locks import KeyedLock


logger = logging.getLogger(__name__)

ENVELOPE_FILENAME = "memories.json"


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _atomic_write(path: Path, payload: str) -> None:
    """Write payload to a sibling temp file, fsync it, then rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".memories.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


class LocalStorageAdapter(StorageAdapter):
    """
    Per-user JSON envelopes on the local filesystem.

    Features:
    - Per-user write serialization (keyed asyncio lock)
    - Atomic replace on every write
    - TTL and max-count eviction applied on write, TTL re-applied on read
    - Fail-safe reads: missing, corrupt or foreign envelopes read as empty
    """

    def __init__(
        self,
        base_path: str = ".chat_memory",
        max_memories_per_user: int = 1000,
        ttl_days: int = 30,
        lock_timeout: Optional[float] = None,
        recall: Optional[MemoryRecall] = None,
    ):
        """
        Initialize local adapter.

        Args:
            base_path: Root directory for user envelopes
            max_memories_per_user: Eviction threshold (most recent kept)
            ttl_days: Retention window; <= 0 disables TTL
            lock_timeout: Seconds to wait for a user lock (None = forever)
            recall: Scorer used by search (default: MemoryRecall())
        """
        self.base_path = Path(base_path)
        self.max_memories_per_user = max_memories_per_user
        self.ttl_days = ttl_days
        self.recall = recall or MemoryRecall()
        self.locks = KeyedLock(timeout=lock_timeout)

    async def initialize(self) -> None:
        try:
            await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create storage directory {self.base_path}: {e}") from e
        logger.info(f"Local memory storage ready at {self.base_path}")

    # ------------------------------------------------------------------
    # Paths and envelope I/O
    # ------------------------------------------------------------------

    def _envelope_path(self, user_id: str) -> Path:
        return self.base_path / sanitize_user_id(user_id) / ENVELOPE_FILENAME

    def get_user_storage_path(self, user_id: str) -> str:
        return str(self._envelope_path(user_id))

    def _lock_key(self, user_id: str) -> str:
        # Ids that sanitize to the same directory share one lock
        return f"user:{sanitize_user_id(user_id)}"

    async def _fetch(self, user_id: str) -> Optional[StoredUserMemories]:
        """
        Load the user's envelope.

        Returns:
            The envelope, or None if no file exists

        Raises:
            EnvelopeIntegrityError: Corrupt or foreign envelope
            StorageError: File exists but cannot be read
        """
        path = self._envelope_path(user_id)
        try:
            raw = await asyncio.to_thread(_read_text, path)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"cannot read {path}: {e}") from e
        return decode_envelope(raw, user_id)

    async def _load_active(self, user_id: str) -> List[Memory]:
        """Read path: never raises for missing, corrupt or foreign envelopes."""
        try:
            envelope = await self._fetch(user_id)
        except EnvelopeOwnershipError:
            logger.error(f"Security: envelope at {self.get_user_storage_path(user_id)} belongs to another user")
            return []
        except EnvelopeIntegrityError as e:
            logger.error(f"Corrupted memory envelope for user {user_id}: {e}")
            return []
        except StorageError as e:
            logger.warning(f"Failed to read memories for user {user_id}: {e}")
            return []
        if envelope is None:
            return []
        return envelope.memories

    async def _load_for_write(self, user_id: str) -> List[Memory]:
        """
        Write path load. Must be called with the user lock held.

        A corrupt envelope is replaced; a foreign one is never overwritten.
        """
        try:
            envelope = await self._fetch(user_id)
        except EnvelopeOwnershipError as e:
            logger.error(f"Security: refusing to overwrite envelope of another user at "
                         f"{self.get_user_storage_path(user_id)}")
            raise StorageError(f"envelope belongs to a different user: {e}") from e
        except EnvelopeIntegrityError as e:
            logger.error(f"Replacing corrupted memory envelope for user {user_id}: {e}")
            return []
        return envelope.memories if envelope is not None else []

    async def _store(self, user_id: str, memories: List[Memory]) -> None:
        """Persist the envelope. Must be called with the user lock held."""
        kept = prepare_for_write(memories, self.ttl_days, self.max_memories_per_user)
        payload = encode_envelope(build_envelope(user_id, kept))
        path = self._envelope_path(user_id)
        try:
            await asyncio.to_thread(_atomic_write, path, payload)
        except OSError as e:
            logger.error(f"Failed to write memories for user {user_id}: {e}")
            raise StorageError(f"cannot write {path}: {e}") from e
        if len(kept) < len(memories):
            logger.debug(f"Dropped {len(memories) - len(kept)} expired/evicted memories for user {user_id}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_memory(self, user_id: str, memory: Memory) -> None:
        await self.save_memories(user_id, [memory])

    async def save_memories(self, user_id: str, memories: List[Memory]) -> None:
        if not memories:
            return
        async with self.locks.hold(self._lock_key(user_id)):
            current = await self._load_for_write(user_id)
            await self._store(user_id, current + list(memories))
        logger.debug(f"Saved {len(memories)} memories for user {user_id}")

    async def clear_memories(self, user_id: str, memory_filter: Optional[MemoryFilter] = None) -> None:
        async with self.locks.hold(self._lock_key(user_id)):
            current = await self._load_for_write(user_id)

            if memory_filter is None:
                path = self._envelope_path(user_id)
                try:
                    await asyncio.to_thread(_unlink, path)
                except OSError as e:
                    raise StorageError(f"cannot delete {path}: {e}") from e
                logger.info(f"Cleared all memories for user {user_id}")
                return

            matching = {m.id for m in apply_filter(current, memory_filter)}
            if not matching:
                return
            await self._store(user_id, [m for m in current if m.id not in matching])
            logger.info(f"Cleared {len(matching)} memories for user {user_id}")

    async def prune_expired_memories(self, user_id: str) -> int:
        async with self.locks.hold(self._lock_key(user_id)):
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

        path = self._envelope_path(user_id)
        try:
            st = await asyncio.to_thread(os.stat, path)
        except FileNotFoundError:
            return stats
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            return stats

        stats.storage_used = st.st_size
        stats.last_updated = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        return stats

    async def validate_user_access(self, user_id: str, memory_id: str) -> bool:
        memories = await self.get_memories(user_id)
        return any(m.id == memory_id for m in memories)
