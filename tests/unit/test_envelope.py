"""
Unit tests for envelope helpers.

Tests:
- sanitize_user_id(): safe tokens, length cap, empty ids
- TTL and eviction policy
- encode/decode with owner verification
- summarize(): per-source/type/tag counts
"""

import json

import pytest

from chat_memory.memory.schemas import MemoryFilter
from chat_memory.persist.adapter import EnvelopeIntegrityError, EnvelopeOwnershipError, InvalidUserIdError, StorageError
from chat_memory.persist.envelope import (
    build_envelope,
    decode_envelope,
    encode_envelope,
    enforce_limit,
    filter_by_ttl,
    prepare_for_write,
    sanitize_user_id,
    select,
    summarize,
)


# ============================================================================
# Sanitization
# ============================================================================

def test_sanitize_keeps_safe_ids():
    assert sanitize_user_id("user_123-abc") == "user_123-abc"


def test_sanitize_replaces_path_characters():
    token = sanitize_user_id("../../etc/passwd")
    assert "/" not in token
    assert "." not in token
    assert token == "______etc_passwd"


def test_sanitize_caps_length():
    assert len(sanitize_user_id("u" * 200)) == 64


def test_sanitize_rejects_empty():
    with pytest.raises(InvalidUserIdError) as exc_info:
        sanitize_user_id("")
    assert isinstance(exc_info.value, StorageError)


# ============================================================================
# Retention
# ============================================================================

def test_ttl_drops_old_memories(make_memory):
    fresh = make_memory("fresh", days_old=1)
    stale = make_memory("stale", days_old=31)

    assert filter_by_ttl([fresh, stale], ttl_days=30) == [fresh]


def test_ttl_disabled_keeps_everything(make_memory):
    ancient = make_memory("ancient", days_old=3650)
    assert filter_by_ttl([ancient], ttl_days=0) == [ancient]


def test_enforce_limit_keeps_most_recent(make_memory):
    memories = [make_memory(f"m{i}", days_old=i) for i in range(5)]

    kept = enforce_limit(list(reversed(memories)), 3)

    assert [m.content for m in kept] == ["m0", "m1", "m2"]


def test_prepare_for_write_applies_ttl_before_eviction(make_memory):
    memories = [make_memory("stale", days_old=40)] + [make_memory(f"m{i}", days_old=i) for i in range(3)]

    kept = prepare_for_write(memories, ttl_days=30, max_memories=3)

    assert [m.content for m in kept] == ["m0", "m1", "m2"]


def test_select_orders_filters_and_limits(make_memory):
    memories = [
        make_memory("old user", days_old=3, source="user"),
        make_memory("new assistant", days_old=0, source="assistant"),
        make_memory("new user", days_old=1, source="user"),
    ]

    assert [m.content for m in select(memories, 30)] == ["new assistant", "new user", "old user"]
    assert [m.content for m in select(memories, 30, limit=1)] == ["new assistant"]
    users = select(memories, 30, memory_filter=MemoryFilter(source="user"))
    assert [m.content for m in users] == ["new user", "old user"]


# ============================================================================
# Encoding
# ============================================================================

def test_encode_decode_preserves_owner_and_count(make_memory):
    envelope = build_envelope("user_1", [make_memory("a"), make_memory("b")])

    raw = encode_envelope(envelope)
    data = json.loads(raw)
    decoded = decode_envelope(raw, "user_1")

    assert data["userId"] == "user_1"
    assert data["metadata"]["count"] == 2
    assert [m.content for m in decoded.memories] == ["a", "b"]


def test_decode_rejects_foreign_envelope(make_memory):
    raw = encode_envelope(build_envelope("alice", [make_memory("a")]))

    with pytest.raises(EnvelopeOwnershipError):
        decode_envelope(raw, "bob")


@pytest.mark.parametrize("raw", ["{not json", "[]", '{"memories": []}', '{"userId": "u", "memories": [{"id": 1}]}'])
def test_decode_rejects_corrupt_documents(raw):
    with pytest.raises(EnvelopeIntegrityError):
        decode_envelope(raw, "u")


def test_summarize_counts(make_memory):
    memories = [
        make_memory("a", source="user", tags=["food"]),
        make_memory("b", source="assistant", type="episodic", tags=["food", "travel"]),
        make_memory("c", source="user", days_old=2),
    ]

    stats = summarize(memories)

    assert stats.count == 3
    assert stats.by_source == {"user": 2, "assistant": 1, "system": 0}
    assert stats.by_type == {"semantic": 2, "episodic": 1, "procedural": 0}
    assert stats.categories == {"food": 2, "travel": 1}
    assert stats.oldest_memory == memories[2].timestamp
