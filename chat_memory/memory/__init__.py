"""
Memory subsystem for per-user conversational recall.

Provides:
- Memory records, filters and the stored envelope
- Lexical relevance scoring for prompt enrichment and search
- Pattern-based statement and topic extraction
- Explicit command parsing (remember/recall/clear/stats)

The service and middleware live in ``chat_memory.memory.service`` and
``chat_memory.memory.middleware``; they depend on the storage adapters and
are exported from the top-level package.
"""

from .schemas import (
    AssistantMemoryContext,
    CommandResult,
    DateRange,
    EnrichedPrompt,
    Memory,
    MemoryExtraction,
    MemoryFilter,
    MemoryStats,
    PromptEnrichmentResult,
    StoredUserMemories,
)
from .recall import MemoryRecall
from .extraction import PatternExtractor, PatternMatcher, extract_topics
from .commands import ParsedCommand, parse_command, is_pure_command

__all__ = [
    "AssistantMemoryContext",
    "CommandResult",
    "DateRange",
    "EnrichedPrompt",
    "Memory",
    "MemoryExtraction",
    "MemoryFilter",
    "MemoryStats",
    "PromptEnrichmentResult",
    "StoredUserMemories",
    "MemoryRecall",
    "PatternExtractor",
    "PatternMatcher",
    "extract_topics",
    "ParsedCommand",
    "parse_command",
    "is_pure_command",
]
