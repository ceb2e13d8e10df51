"""
Per-user conversational memory store.

Persists facts learned in conversation, serves relevance-ranked recall for
prompt enrichment, handles explicit memory commands and derives memories
from assistant responses. Storage is a local JSON envelope per user or a
remote blob store.
"""

__version__ = "0.1.0"

from .config import MemorySettings
from .memory import (
    AssistantMemoryContext,
    CommandResult,
    Memory,
    MemoryFilter,
    MemoryStats,
    PromptEnrichmentResult,
)
from .persist import (
    LocalStorageAdapter,
    RemoteStorageAdapter,
    StorageAdapter,
    StorageError,
)
from .memory.service import MemoryService, create_memory_service, create_storage_adapter
from .memory.middleware import MemoryMiddleware, MemoryRequestContext, MiddlewareOptions

__all__ = [
    "MemorySettings",
    "AssistantMemoryContext",
    "CommandResult",
    "Memory",
    "MemoryFilter",
    "MemoryStats",
    "PromptEnrichmentResult",
    "LocalStorageAdapter",
    "RemoteStorageAdapter",
    "StorageAdapter",
    "StorageError",
    "MemoryService",
    "create_memory_service",
    "create_storage_adapter",
    "MemoryMiddleware",
    "MemoryRequestContext",
    "MiddlewareOptions",
]
