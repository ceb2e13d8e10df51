"""
Memory hooks around a chat request/response cycle.

The serving layer calls ``process_request`` before the model sees the
messages (commands, enrichment) and ``process_response`` afterwards
(background extraction). The requesting user is passed explicitly on every
call through ``MemoryRequestContext``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .commands import is_pure_command
from .schemas import AssistantMemoryContext, CommandResult, PromptEnrichmentResult
from .service import MemoryService


logger = logging.getLogger(__name__)

# Messages are {"role": "system" | "user" | "assistant", "content": str}
Message = Dict[str, str]

TRANSCRIPT_MESSAGES = 4


@dataclass
class MemoryRequestContext:
    """Who the current request belongs to."""

    user_id: str
    conversation_id: Optional[str] = None


@dataclass
class MiddlewareOptions:
    enable_auto_extraction: bool = True
    enable_enrichment: bool = True
    enable_commands: bool = True
    extraction_delay: float = 0.5  # seconds


@dataclass
class MiddlewareResult:
    """Messages to forward plus what the memory layer did."""

    messages: List[Message]
    headers: Dict[str, str] = field(default_factory=dict)
    command: Optional[CommandResult] = None
    enrichment: Optional[PromptEnrichmentResult] = None
    system_prompt_enrichment: Optional[str] = None

    @property
    def handled_by_command(self) -> bool:
        """True when the reply is already in ``messages`` and the model can be skipped."""
        return bool(self.messages) and self.messages[-1].get("role") == "assistant" and self.command is not None


class MemoryMiddleware:
    """
    Request/response hooks that apply the memory service to a chat flow.

    Features:
    - Explicit commands answered directly when the message is only a command
    - Enrichment returned for the system prompt, user message left untouched
    - Delayed background extraction after each response
    - Assistant-memory derivation for completed turns
    """

    def __init__(self, service: MemoryService, options: Optional[MiddlewareOptions] = None):
        self.service = service
        self.options = options or MiddlewareOptions()
        self._pending: Set[asyncio.Task] = set()

    async def initialize(self) -> None:
        await self.service.initialize()

    async def process_request(self, messages: List[Message], context: MemoryRequestContext) -> MiddlewareResult:
        """
        Run commands and enrichment for the trailing user message.

        Args:
            messages: Conversation so far
            context: Requesting user

        Returns:
            MiddlewareResult; for a pure command the last user message is
            replaced by an assistant message carrying the command result
        """
        result = MiddlewareResult(messages=list(messages))
        if not messages:
            return result

        last = messages[-1]
        if last.get("role") != "user":
            return result
        content = last.get("content", "")

        if self.options.enable_commands:
            command = await self.service.handle_explicit_command(content, context.user_id)
            if command.recognized and command.result:
                result.command = command
                result.headers["X-Memory-Command"] = command.action or "processed"

                if is_pure_command(content):
                    result.messages = list(messages[:-1]) + [{"role": "assistant", "content": command.result}]
                    return result

        if self.options.enable_enrichment:
            enrichment = await self.service.enrich_prompt_behind_the_scenes(content, context.user_id)
            if enrichment.relevant_memories:
                result.enrichment = enrichment
                result.system_prompt_enrichment = enrichment.enriched_content
                result.headers["X-Memory-Enriched"] = str(len(enrichment.relevant_memories))
                result.headers["X-Memory-Confidence"] = f"{enrichment.confidence_score:.2f}"

        return result

    def process_response(
        self,
        messages: List[Message],
        response: str,
        context: MemoryRequestContext,
    ) -> Optional[asyncio.Task]:
        """
        Schedule extraction over the latest exchange without blocking.

        Must be called from a running event loop.

        Returns:
            The background task, or None when extraction is disabled
        """
        if not self.options.enable_auto_extraction:
            return None

        transcript = build_transcript(messages, response)
        task = asyncio.create_task(self._extract_later(transcript, context.user_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _extract_later(self, transcript: str, user_id: str) -> None:
        await asyncio.sleep(self.options.extraction_delay)
        try:
            extraction = await self.service.extract_memories(transcript, user_id)
        except Exception as e:
            logger.error(f"Background extraction failed for user {user_id}: {e}")
            return
        if extraction.extracted_memories:
            logger.info(f"Extracted {len(extraction.extracted_memories)} memories for user {user_id}")

    async def wait_for_pending(self) -> None:
        """Wait for scheduled background extractions (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def store_assistant_response(
        self,
        context: MemoryRequestContext,
        user_prompt: str,
        assistant_response: str,
        **extra: Any,
    ) -> None:
        """
        Hand a completed turn to assistant-memory derivation.

        Extra keyword arguments fill AssistantMemoryContext fields such as
        ``model_used``, ``tokens_used`` or ``search_performed``.
        """
        conversation_id = context.conversation_id or f"conv_{int(time.time() * 1000)}"
        turn = AssistantMemoryContext(
            user_id=context.user_id,
            conversation_id=conversation_id,
            user_prompt=user_prompt,
            assistant_response=assistant_response,
            **extra,
        )
        await self.service.store_assistant_memory(turn)


def build_transcript(messages: List[Message], response: str) -> str:
    """Render the last few messages plus the new response for extraction."""
    lines = []
    for message in messages[-TRANSCRIPT_MESSAGES:]:
        role = message.get("role")
        if role == "user":
            lines.append(f"User: {message.get('content', '')}")
        elif role == "assistant":
            lines.append(f"Assistant: {message.get('content', '')}")
    lines.append(f"Assistant: {response}")
    return "\n\n".join(lines)
