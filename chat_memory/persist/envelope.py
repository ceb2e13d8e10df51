"""
Envelope helpers shared by all storage adapters.

Pure functions: sanitize user ids, apply TTL and filters, order and evict
memories, and encode/decode the persisted envelope.
"""

import json
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import ValidationError

from chat_memory.memory.schemas import (
    ENVELOPE_VERSION,
    EnvelopeMetadata,
    Memory,
    MemoryFilter,
    MemoryStats,
    StoredUserMemories,
    utc_now,
)
from .adapter import EnvelopeIntegrityError, EnvelopeOwnershipError, InvalidUserIdError


MAX_USER_ID_LENGTH = 64

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_user_id(user_id: str) -> str:
    """
    Turn a user id into a filesystem and key safe token.

    Characters outside ``[a-zA-Z0-9_-]`` become underscores and the result
    is capped at 64 characters.

    Raises:
        InvalidUserIdError: If the user id is empty
    """
    if not user_id:
        raise InvalidUserIdError("user_id must be a non-empty string")
    return _UNSAFE_CHARS.sub("_", user_id)[:MAX_USER_ID_LENGTH]


def ttl_cutoff(ttl_days: int, now: Optional[datetime] = None) -> Optional[datetime]:
    """Oldest timestamp still retained, or None when TTL is disabled."""
    if ttl_days <= 0:
        return None
    return (now or utc_now()) - timedelta(days=ttl_days)


def filter_by_ttl(memories: Iterable[Memory], ttl_days: int, now: Optional[datetime] = None) -> List[Memory]:
    """Drop memories older than the retention window."""
    cutoff = ttl_cutoff(ttl_days, now)
    if cutoff is None:
        return list(memories)
    return [m for m in memories if m.timestamp > cutoff]


def apply_filter(memories: Iterable[Memory], memory_filter: Optional[MemoryFilter]) -> List[Memory]:
    """Keep memories matching the filter (all of them if no filter)."""
    if memory_filter is None:
        return list(memories)
    return [m for m in memories if memory_filter.matches(m)]


def sort_by_recency(memories: Iterable[Memory]) -> List[Memory]:
    """Most recent first. Stable for equal timestamps."""
    return sorted(memories, key=lambda m: m.timestamp, reverse=True)


def enforce_limit(memories: List[Memory], max_memories: int) -> List[Memory]:
    """Keep only the ``max_memories`` most recent memories."""
    if len(memories) <= max_memories:
        return memories
    return sort_by_recency(memories)[:max_memories]


def prepare_for_write(memories: List[Memory], ttl_days: int, max_memories: int) -> List[Memory]:
    """Write-path policy: TTL first, then max-count eviction."""
    return enforce_limit(filter_by_ttl(memories, ttl_days), max_memories)


def select(
    memories: Iterable[Memory],
    ttl_days: int,
    limit: Optional[int] = None,
    memory_filter: Optional[MemoryFilter] = None,
) -> List[Memory]:
    """Read-path policy: TTL, optional filter, recency order, optional cap."""
    selected = sort_by_recency(apply_filter(filter_by_ttl(memories, ttl_days), memory_filter))
    if limit and limit > 0:
        selected = selected[:limit]
    return selected


def build_envelope(user_id: str, memories: List[Memory]) -> StoredUserMemories:
    """Wrap memories in a fresh envelope."""
    return StoredUserMemories(
        user_id=user_id,
        memories=memories,
        metadata=EnvelopeMetadata(
            count=len(memories),
            last_updated=utc_now().isoformat(),
            version=ENVELOPE_VERSION,
        ),
    )


def encode_envelope(envelope: StoredUserMemories) -> str:
    """Serialize an envelope to its JSON document."""
    return json.dumps(envelope.to_storage_dict(), ensure_ascii=False, indent=2)


def decode_envelope(raw: str, expected_user_id: str) -> StoredUserMemories:
    """
    Parse an envelope and verify its owner.

    Raises:
        EnvelopeIntegrityError: If the document is corrupt
        EnvelopeOwnershipError: If it is stored for a different user id
    """
    try:
        envelope = StoredUserMemories.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        raise EnvelopeIntegrityError(f"corrupted envelope: {e}") from e

    if envelope.user_id != expected_user_id:
        raise EnvelopeOwnershipError("user id mismatch in stored envelope")

    return envelope


def summarize(memories: List[Memory]) -> MemoryStats:
    """Count active memories by source, type and tag."""
    stats = MemoryStats(count=len(memories))
    for memory in memories:
        stats.by_source[memory.source] = stats.by_source.get(memory.source, 0) + 1
        stats.by_type[memory.type] = stats.by_type.get(memory.type, 0) + 1
    stats.categories = dict(Counter(tag for m in memories for tag in m.tags))
    if memories:
        stats.oldest_memory = min(m.timestamp for m in memories)
    return stats
