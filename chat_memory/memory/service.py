"""
Memory service: the orchestration layer used by the conversation server.

Wraps a storage adapter with:
- Behind-the-scenes prompt enrichment
- Pattern-based extraction of user statements
- Explicit memory commands (remember/recall/clear/stats)
- Derivation of memories from the assistant's own responses
"""

import logging
from typing import Any, Dict, List, Optional

from chat_memory.config.settings import MemorySettings
from chat_memory.persist.adapter import StorageAdapter, StorageError
from chat_memory.persist.local_adapter import LocalStorageAdapter
from chat_memory.persist.remote_adapter import RemoteStorageAdapter
from chat_memory.telemetry import (
    ASSISTANT_MEMORY_STORED,
    MEMORIES_EXTRACTED,
    MEMORY_COMMAND,
    MEMORY_ENRICHED,
    elapsed_ms,
    log_memory_event,
    start_timer,
)
from .commands import ParsedCommand, parse_command
from .extraction import (
    StatementExtractor,
    default_assistant_extractor,
    default_user_extractor,
    extract_topics,
)
from .recall import MemoryRecall, confidence_from_scores, score_table
from .schemas import (
    AssistantMemoryContext,
    CommandResult,
    EnrichedPrompt,
    Memory,
    MemoryExtraction,
    MemoryFilter,
    MemoryStats,
    PromptEnrichmentResult,
    new_memory_id,
    utc_now,
)


logger = logging.getLogger(__name__)

ENRICHMENT_CANDIDATES = 50
RECALL_SEARCH_LIMIT = 5
RECALL_RECENT_LIMIT = 10
MAX_ASSISTANT_LEARNINGS = 3

EXTRACTED_TAG = "extracted"


def _bullets(memories: List[Memory]) -> str:
    return "\n".join(f"• {m.content}" for m in memories)


class MemoryService:
    """
    Per-user memory operations on top of a storage adapter.

    Storage failures never reach the conversation path: reads degrade to
    empty results and auxiliary writes are logged and dropped. Only an
    explicit "remember" reports a failed save back to the user.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        settings: Optional[MemorySettings] = None,
        recall: Optional[MemoryRecall] = None,
        user_extractor: Optional[StatementExtractor] = None,
        assistant_extractor: Optional[StatementExtractor] = None,
    ):
        """
        Initialize memory service.

        Args:
            storage: Storage adapter for user envelopes
            settings: Feature flags and limits (default: MemorySettings())
            recall: Relevance scorer for enrichment
            user_extractor: Extractor for user statements
            assistant_extractor: Extractor for assistant learnings
        """
        self.storage = storage
        self.settings = settings or MemorySettings()
        self.recall = recall or MemoryRecall()
        self.user_extractor = user_extractor or default_user_extractor()
        self.assistant_extractor = assistant_extractor or default_assistant_extractor()

    async def initialize(self) -> None:
        await self.storage.initialize()

    async def aclose(self) -> None:
        """Release backend resources (HTTP connections for remote storage)."""
        if isinstance(self.storage, RemoteStorageAdapter):
            await self.storage.aclose()

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def enrich_prompt_behind_the_scenes(self, prompt: str, user_id: str) -> PromptEnrichmentResult:
        """
        Select relevant memories and render them for the system prompt.

        Args:
            prompt: Incoming user prompt
            user_id: Owner of the memories

        Returns:
            PromptEnrichmentResult; empty with zero confidence when the user
            has no memories or storage is unavailable
        """
        start = start_timer()
        empty = PromptEnrichmentResult(original_prompt=prompt)

        try:
            memories = await self.storage.get_memories(user_id, limit=ENRICHMENT_CANDIDATES)
        except StorageError as e:
            logger.warning(f"Enrichment skipped for user {user_id}: {e}")
            return empty

        if not memories:
            logger.debug(f"No memories for user {user_id}, skipping enrichment")
            return empty

        ranked = self.recall.rank_for_prompt(memories, prompt)
        selected = [memory for _, memory in ranked]
        confidence = confidence_from_scores([score for score, _ in ranked])
        logger.debug(f"Enrichment scores for user {user_id}: {score_table(ranked)}")

        log_memory_event(MEMORY_ENRICHED, user_id, elapsed_ms(start), {
            "candidates": len(memories),
            "selected": len(selected),
            "confidence": round(confidence, 3),
        })

        return PromptEnrichmentResult(
            original_prompt=prompt,
            enriched_content=self.recall.format_memory_context(selected),
            relevant_memories=selected,
            confidence_score=confidence,
            enrichment_method="combined",
        )

    async def enrich_prompt(self, prompt: str, user_id: str) -> EnrichedPrompt:
        """Prompt with the enrichment block prepended (older call shape)."""
        result = await self.enrich_prompt_behind_the_scenes(prompt, user_id)

        enriched = prompt
        if result.enriched_content:
            enriched = result.enriched_content + "\n\n" + prompt

        return EnrichedPrompt(
            original_prompt=prompt,
            enriched_prompt=enriched,
            relevant_memories=result.relevant_memories,
            memory_count=len(result.relevant_memories),
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def extract_memories(self, conversation: str, user_id: str) -> MemoryExtraction:
        """
        Extract first-person statements from conversation text and save them.

        Returns:
            MemoryExtraction with the memories that were persisted
        """
        if not self.settings.enable_auto_extraction:
            return MemoryExtraction(conversation=conversation)

        start = start_timer()
        extracted_at = utc_now().isoformat()
        memories = [
            Memory(
                content=statement.content,
                type="semantic",
                source="user",
                tags=[EXTRACTED_TAG],
                importance=0.5,
                decay=0.1,
                metadata={
                    "userId": user_id,
                    "extractedAt": extracted_at,
                    "source": "conversation",
                    "patternName": statement.pattern_name,
                    "confidence": statement.confidence,
                },
            )
            for statement in self.user_extractor.extract(conversation)
        ]

        if not memories:
            return MemoryExtraction(conversation=conversation)

        try:
            await self.storage.save_memories(user_id, memories)
        except StorageError as e:
            logger.warning(f"Failed to save {len(memories)} extracted memories for user {user_id}: {e}")
            return MemoryExtraction(conversation=conversation)

        log_memory_event(MEMORIES_EXTRACTED, user_id, elapsed_ms(start), {"count": len(memories)})
        return MemoryExtraction(extracted_memories=memories, conversation=conversation)

    # ------------------------------------------------------------------
    # Explicit commands
    # ------------------------------------------------------------------

    async def handle_explicit_command(self, text: str, user_id: str) -> CommandResult:
        """
        Execute a memory command if the utterance is one.

        Returns:
            CommandResult; ``action`` is None when the utterance is ordinary
            conversation
        """
        if not self.settings.enable_explicit_commands:
            return CommandResult(command=text, result="Memory commands are disabled.")

        parsed = parse_command(text)
        if parsed is None:
            return CommandResult(command=text)

        start = start_timer()
        handlers = {
            "save": self._remember,
            "recall": self._recall,
            "clear": self._clear,
            "stats": self._stats,
        }
        result = await handlers[parsed.action](text, parsed, user_id)

        log_memory_event(MEMORY_COMMAND, user_id, elapsed_ms(start), {
            "action": parsed.action,
            "memories": len(result.memories),
        })
        return result

    async def _remember(self, text: str, parsed: ParsedCommand, user_id: str) -> CommandResult:
        content = parsed.argument
        if not content:
            return CommandResult(command=text, result="What would you like me to remember?", action="save")

        memory = Memory(
            content=content,
            type="semantic",
            source="user",
            importance=0.5,
            decay=0.1,
            metadata={"type": "explicit", "createdAt": utc_now().isoformat(), "userId": user_id},
        )
        try:
            await self.storage.save_memory(user_id, memory)
        except StorageError as e:
            logger.warning(f"Explicit remember failed for user {user_id}: {e}")
            return CommandResult(
                command=text,
                result="Sorry, I could not save that memory right now. Please try again later.",
                action="save",
            )

        return CommandResult(
            command=text,
            result=f'I\'ll remember that: "{content}"',
            memories=[memory],
            action="save",
        )

    async def _recall(self, text: str, parsed: ParsedCommand, user_id: str) -> CommandResult:
        query = parsed.argument

        if query:
            memories = await self.search_user_memories(user_id, query, limit=RECALL_SEARCH_LIMIT)
            if memories:
                result = f'Here\'s what I remember about "{query}":\n{_bullets(memories)}'
            else:
                result = f'I don\'t have any memories about "{query}".'
            return CommandResult(command=text, result=result, memories=memories, action="recall")

        memories = await self.get_user_memories(user_id, limit=RECALL_RECENT_LIMIT)
        if memories:
            result = f"Here are your recent memories:\n{_bullets(memories)}"
        else:
            result = "I don't have any memories stored for you yet."
        return CommandResult(command=text, result=result, memories=memories, action="recall")

    async def _clear(self, text: str, parsed: ParsedCommand, user_id: str) -> CommandResult:
        try:
            await self.storage.clear_memories(user_id)
        except StorageError as e:
            logger.warning(f"Clear command failed for user {user_id}: {e}")
            return CommandResult(
                command=text,
                result="Sorry, I could not clear your memories right now.",
                action="clear",
            )
        return CommandResult(command=text, result="All your memories have been cleared.", action="clear")

    async def _stats(self, text: str, parsed: ParsedCommand, user_id: str) -> CommandResult:
        stats = await self.get_user_stats(user_id)
        last_updated = stats.last_updated.strftime("%Y-%m-%d %H:%M:%S %Z") if stats.last_updated else "Never"
        return CommandResult(
            command=text,
            result=f"Memory Statistics:\n• Total memories: {stats.count}\n• Last updated: {last_updated}",
            action="stats",
        )

    # ------------------------------------------------------------------
    # Assistant memories
    # ------------------------------------------------------------------

    def _build_assistant_memories(self, context: AssistantMemoryContext) -> List[Memory]:
        prompt = context.user_prompt
        response = context.assistant_response

        prompt_excerpt = prompt[:200] + ("..." if len(prompt) > 200 else "")
        response_topics = extract_topics(response)

        episode = Memory(
            id=new_memory_id("asst"),
            content=f'User asked: "{prompt_excerpt}" - I responded with insights about: {", ".join(response_topics)}',
            type="episodic",
            source="assistant",
            conversation_id=context.conversation_id,
            timestamp=context.timestamp,
            tags=list(dict.fromkeys(extract_topics(prompt) + response_topics)),
            importance=0.6,
            decay=0.05,
            visibility="private",
            metadata={
                "userId": context.user_id,
                "modelUsed": context.model_used,
                "tokensUsed": context.tokens_used,
                "searchPerformed": context.search_performed,
                "memoryEnriched": context.memory_enriched,
                "responseLength": len(response),
            },
        )

        memories = [episode]
        for statement in self.assistant_extractor.extract(response)[:MAX_ASSISTANT_LEARNINGS]:
            memories.append(Memory(
                id=new_memory_id("asst"),
                content=statement.content,
                type="semantic",
                source="assistant",
                conversation_id=context.conversation_id,
                timestamp=context.timestamp,
                tags=extract_topics(statement.content),
                importance=0.7,
                decay=0.03,
                relations=[episode.id],
                visibility="private",
                metadata={
                    "userId": context.user_id,
                    "extractedFrom": "assistant_response",
                    "originalContext": prompt[:100],
                },
            ))
        return memories

    async def store_assistant_memory(self, context: AssistantMemoryContext) -> None:
        """
        Derive memories from a completed turn and store them in one write.

        One episodic summary is always stored, plus up to three semantic
        learnings linked to it. Never raises.
        """
        start = start_timer()
        try:
            memories = self._build_assistant_memories(context)
            await self.storage.save_memories(context.user_id, memories)
        except Exception as e:
            logger.error(f"Failed to store assistant memory for user {context.user_id}: {e}")
            return

        log_memory_event(ASSISTANT_MEMORY_STORED, context.user_id, elapsed_ms(start), {
            "conversation_id": context.conversation_id,
            "count": len(memories),
        })

    # ------------------------------------------------------------------
    # Direct access
    # ------------------------------------------------------------------

    async def get_user_memories(
        self,
        user_id: str,
        limit: Optional[int] = None,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        try:
            return await self.storage.get_memories(user_id, limit=limit, memory_filter=memory_filter)
        except StorageError as e:
            logger.warning(f"Failed to list memories for user {user_id}: {e}")
            return []

    async def search_user_memories(
        self,
        user_id: str,
        query: str,
        limit: int = 10,
        memory_filter: Optional[MemoryFilter] = None,
    ) -> List[Memory]:
        try:
            return await self.storage.search_memories(user_id, query, limit=limit, memory_filter=memory_filter)
        except StorageError as e:
            logger.warning(f"Failed to search memories for user {user_id}: {e}")
            return []

    async def clear_user_memories(self, user_id: str, memory_filter: Optional[MemoryFilter] = None) -> None:
        try:
            await self.storage.clear_memories(user_id, memory_filter)
        except StorageError as e:
            logger.warning(f"Failed to clear memories for user {user_id}: {e}")

    async def prune_user_memories(self, user_id: str) -> int:
        """Drop expired memories from storage; returns how many were removed."""
        try:
            return await self.storage.prune_expired_memories(user_id)
        except StorageError as e:
            logger.warning(f"Failed to prune memories for user {user_id}: {e}")
            return 0

    async def get_user_stats(self, user_id: str) -> MemoryStats:
        try:
            return await self.storage.get_user_stats(user_id)
        except StorageError as e:
            logger.warning(f"Failed to read stats for user {user_id}: {e}")
            return MemoryStats()

    async def validate_user_access(self, user_id: str, memory_id: str) -> bool:
        try:
            return await self.storage.validate_user_access(user_id, memory_id)
        except StorageError as e:
            logger.warning(f"Access check failed for user {user_id}: {e}")
            return False

    async def save_memory(
        self,
        user_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Memory]:
        """
        Save one user-sourced semantic memory.

        Returns:
            The stored memory, or None if storage failed
        """
        memory = Memory(
            content=content,
            type="semantic",
            source="user",
            importance=0.5,
            decay=0.1,
            visibility="private",
            metadata={**(metadata or {}), "createdAt": utc_now().isoformat(), "userId": user_id},
        )
        try:
            await self.storage.save_memory(user_id, memory)
        except StorageError as e:
            logger.warning(f"Failed to save memory for user {user_id}: {e}")
            return None
        return memory


def create_storage_adapter(settings: MemorySettings) -> StorageAdapter:
    """
    Build the storage adapter selected by settings.

    "auto" picks remote storage only when a blob token is configured and the
    platform marker is set; otherwise local storage.
    """
    backend = settings.resolve_backend()
    if backend == "remote":
        logger.info("Using remote blob memory storage")
        return RemoteStorageAdapter.from_settings(
            settings.remote,
            max_memories_per_user=settings.max_memories_per_user,
            ttl_days=settings.ttl_days,
        )

    logger.info(f"Using local memory storage at {settings.local.base_path}")
    return LocalStorageAdapter(
        base_path=settings.local.base_path,
        max_memories_per_user=settings.max_memories_per_user,
        ttl_days=settings.ttl_days,
        lock_timeout=settings.local.lock_timeout,
    )


def create_memory_service(
    settings: Optional[MemorySettings] = None,
    storage: Optional[StorageAdapter] = None,
) -> MemoryService:
    """
    Factory function to create a memory service.

    Args:
        settings: Settings (default: MemorySettings.from_env())
        storage: Pre-built adapter; overrides backend selection

    Returns:
        MemoryService instance (call ``initialize()`` before use)
    """
    if settings is None:
        settings = MemorySettings.from_env()
    if storage is None:
        storage = create_storage_adapter(settings)
    return MemoryService(storage, settings=settings)
