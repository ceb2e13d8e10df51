"""
End-to-end memory workflows through the service and middleware.

Covers the behaviour the serving layer depends on:
- save, search and enrich on one user
- explicit remember/recall round trip
- isolation between users
- retention and eviction across writes
- concurrent writers on the local backend
- the same flows on the remote backend
"""
import asyncio
import json

import pytest

from chat_memory import (
    LocalStorageAdapter,
    MemoryMiddleware,
    MemoryRequestContext,
    MemoryService,
    MemorySettings,
    MiddlewareOptions,
)
from chat_memory.memory.schemas import AssistantMemoryContext

# Mark all tests as async
pytestmark = pytest.mark.asyncio


@pytest.fixture
def remote_service(remote_adapter):
    return MemoryService(remote_adapter, settings=MemorySettings(storage="remote"))


async def test_save_search_enrich(service):
    await service.save_memory("user_123", "I like TypeScript programming")
    await service.save_memory("user_123", "I prefer dark mode")

    results = await service.search_user_memories("user_123", "typescript")
    assert [m.content for m in results] == ["I like TypeScript programming"]

    enrichment = await service.enrich_prompt_behind_the_scenes("Tell me about TypeScript", "user_123")
    assert enrichment.relevant_memories[0].content == "I like TypeScript programming"
    assert "I like TypeScript programming" in enrichment.enriched_content
    assert enrichment.confidence_score > 0


async def test_remember_then_recall(service):
    saved = await service.handle_explicit_command("remember I live in Seattle", "user_123")
    assert saved.action == "save"
    assert "I live in Seattle" in saved.result

    recalled = await service.handle_explicit_command("recall Seattle", "user_123")
    assert recalled.action == "recall"
    assert "• I live in Seattle" in recalled.result.splitlines()


async def test_users_never_see_each_other(service):
    await service.save_memory("alice", "alice likes chess")
    await service.save_memory("bob", "bob likes chess too")

    alice = await service.search_user_memories("alice", "chess")
    bob = await service.search_user_memories("bob", "chess")

    assert [m.content for m in alice] == ["alice likes chess"]
    assert [m.content for m in bob] == ["bob likes chess too"]


async def test_ttl_and_eviction_across_writes(memory_dir, make_memory):
    adapter = LocalStorageAdapter(base_path=str(memory_dir), max_memories_per_user=10, ttl_days=30)
    service = MemoryService(adapter)

    await adapter.save_memory("u", make_memory("ancient", days_old=31))
    for i in range(12):
        await service.save_memory("u", f"fact {i}")

    stored = json.loads((memory_dir / "u" / "memories.json").read_text())
    assert stored["metadata"]["count"] == 10
    contents = [m["content"] for m in stored["memories"]]
    assert "ancient" not in contents
    assert "fact 11" in contents
    assert "fact 0" not in contents


async def test_concurrent_conversation_writers(service):
    """Commands, extraction and assistant memories racing on one user."""
    middleware = MemoryMiddleware(service, MiddlewareOptions(extraction_delay=0))
    ctx = MemoryRequestContext(user_id="busy", conversation_id="conv_9")

    jobs = []
    for i in range(10):
        jobs.append(service.handle_explicit_command(f"remember item {i}", "busy"))
        jobs.append(service.extract_memories(f"I like flavour {i}.", "busy"))
        jobs.append(middleware.store_assistant_response(ctx, f"question {i}", "ok"))
    await asyncio.gather(*jobs)

    stats = await service.get_user_stats("busy")
    assert stats.count == 30
    assert stats.by_type["episodic"] == 10


async def test_chat_turn_through_middleware(service):
    middleware = MemoryMiddleware(service, MiddlewareOptions(extraction_delay=0))
    ctx = MemoryRequestContext(user_id="user_123", conversation_id="conv_1")

    # First turn: the user shares a preference, extracted after the response
    first = [{"role": "user", "content": "I prefer dark mode in every editor."}]
    request = await middleware.process_request(first, ctx)
    assert request.system_prompt_enrichment is None
    middleware.process_response(first, "Noted, dark themes are easy on the eyes.", ctx)
    await middleware.wait_for_pending()

    # Second turn: the preference comes back as hidden context
    second = first + [
        {"role": "assistant", "content": "Noted, dark themes are easy on the eyes."},
        {"role": "user", "content": "Which dark mode theme works for an editor?"},
    ]
    request = await middleware.process_request(second, ctx)

    assert request.headers["X-Memory-Enriched"] == "1"
    assert "I prefer dark mode in every editor" in request.system_prompt_enrichment
    assert request.messages == second


async def test_remote_backend_workflow(remote_service, blob_store):
    await remote_service.initialize()

    saved = await remote_service.handle_explicit_command("remember I live in Seattle", "user_123")
    assert saved.action == "save"
    assert "memories/user_123.json" in blob_store.blobs

    recalled = await remote_service.handle_explicit_command("recall Seattle", "user_123")
    assert "• I live in Seattle" in recalled.result

    cleared = await remote_service.handle_explicit_command("clear my memories", "user_123")
    assert cleared.action == "clear"
    assert "memories/user_123.json" not in blob_store.blobs


async def test_remote_outage_is_not_fatal(remote_service, blob_store):
    await remote_service.save_memory("user_123", "I like tea")
    blob_store.down = True

    enrichment = await remote_service.enrich_prompt_behind_the_scenes("tea please", "user_123")
    assert enrichment.relevant_memories == []

    saved = await remote_service.handle_explicit_command("remember I like coffee", "user_123")
    assert "could not save" in saved.result

    context = AssistantMemoryContext(
        user_id="user_123",
        conversation_id="conv_1",
        user_prompt="tea please",
        assistant_response="You mentioned you like tea.",
    )
    await remote_service.store_assistant_memory(context)
