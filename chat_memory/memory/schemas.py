"""
Memory system data models.

Defines the Memory record, the per-user stored envelope, filters and the
result types returned by the memory service.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, Field, field_validator


# Type aliases
MemoryType = Literal["semantic", "episodic", "procedural"]
MemorySource = Literal["user", "assistant", "system"]
MemoryVisibility = Literal["private", "shared"]
CommandAction = Literal["save", "recall", "clear", "stats"]

ENVELOPE_VERSION = "2.0.0"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_memory_id(prefix: str = "mem") -> str:
    """Generate an opaque memory identifier."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Memory(BaseModel):
    """
    A single remembered fact, event or procedure.

    Memories are owned by exactly one user envelope. They are never updated
    in place; the whole envelope is rewritten on every save.
    """

    id: str = Field(default_factory=new_memory_id, description="Opaque unique identifier")
    content: str = Field(..., description="The fact or utterance being remembered")
    type: MemoryType = Field("semantic", description="semantic, episodic or procedural")
    source: MemorySource = Field("user", description="Provenance, used as a scoring weight")
    timestamp: datetime = Field(default_factory=utc_now, description="Creation time")
    tags: List[str] = Field(default_factory=list, description="Coarse filtering tags")
    access_count: int = Field(0, alias="accessCount", description="Times retrieved")
    importance: float = Field(0.5, description="Relevance multiplier in [0, 1]")
    decay: float = Field(0.1, description="Importance erosion hint (stored, not applied)")
    relations: List[str] = Field(default_factory=list, description="Referenced memory ids")
    visibility: MemoryVisibility = Field("private", description="Visibility scope")
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Open metadata map")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "mem_3f9a1c2b7d4e",
                "content": "I like TypeScript programming",
                "type": "semantic",
                "source": "user",
                "timestamp": "2026-10-18T09:30:00Z",
                "tags": ["programming", "typescript"],
                "accessCount": 0,
                "importance": 0.5,
                "decay": 0.1,
                "relations": [],
                "visibility": "private",
                "metadata": {"userId": "user_123", "type": "explicit"},
            }
        }

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_aware(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to the JSON-ready dict persisted inside an envelope."""
        return self.model_dump(mode="json", by_alias=True)


class DateRange(BaseModel):
    """Inclusive creation-time window."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _bounds_are_aware(cls, value: datetime) -> datetime:
        return _as_utc(value)


class MemoryFilter(BaseModel):
    """
    Filter predicate for list, search and clear operations.

    Every field is optional; an absent field always matches. Tags match if
    the memory carries any of them.
    """

    source: Optional[MemorySource] = None
    type: Optional[MemoryType] = None
    visibility: Optional[MemoryVisibility] = None
    tags: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None

    def matches(self, memory: Memory) -> bool:
        """Check whether a memory satisfies every set field."""
        if self.source and memory.source != self.source:
            return False
        if self.type and memory.type != self.type:
            return False
        if self.visibility and memory.visibility != self.visibility:
            return False
        if self.tags and not any(tag in memory.tags for tag in self.tags):
            return False
        if self.date_range:
            if memory.timestamp < self.date_range.start or memory.timestamp > self.date_range.end:
                return False
        return True


class EnvelopeMetadata(BaseModel):
    """Bookkeeping stored alongside a user's memories."""

    count: int = 0
    last_updated: str = Field(default_factory=lambda: utc_now().isoformat(), alias="lastUpdated")
    version: str = ENVELOPE_VERSION

    class Config:
        populate_by_name = True


class StoredUserMemories(BaseModel):
    """The persisted unit: every memory of one user plus bookkeeping."""

    user_id: str = Field(..., alias="userId")
    memories: List[Memory] = Field(default_factory=list)
    metadata: EnvelopeMetadata = Field(default_factory=EnvelopeMetadata)

    class Config:
        populate_by_name = True

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to the JSON-ready envelope dict."""
        return self.model_dump(mode="json", by_alias=True)


class MemoryStats(BaseModel):
    """Per-user storage statistics."""

    count: int = 0
    last_updated: Optional[datetime] = None
    oldest_memory: Optional[datetime] = None
    by_source: Dict[str, int] = Field(
        default_factory=lambda: {"user": 0, "assistant": 0, "system": 0}
    )
    by_type: Dict[str, int] = Field(
        default_factory=lambda: {"semantic": 0, "episodic": 0, "procedural": 0}
    )
    categories: Dict[str, int] = Field(default_factory=dict, description="Active memories per tag")
    storage_used: int = Field(0, description="Envelope size in bytes")


class PromptEnrichmentResult(BaseModel):
    """Side-channel context selected for a prompt."""

    original_prompt: str
    enriched_content: str = ""
    relevant_memories: List[Memory] = Field(default_factory=list)
    confidence_score: float = 0.0
    enrichment_method: Literal["keyword", "combined"] = "keyword"


class EnrichedPrompt(BaseModel):
    """Prompt with the enrichment block prepended."""

    original_prompt: str
    enriched_prompt: str
    relevant_memories: List[Memory] = Field(default_factory=list)
    memory_count: int = 0


class MemoryExtraction(BaseModel):
    """Memories extracted from a conversation transcript."""

    extracted_memories: List[Memory] = Field(default_factory=list)
    conversation: str
    timestamp: datetime = Field(default_factory=utc_now)


class CommandResult(BaseModel):
    """Outcome of an explicit memory command."""

    command: str
    result: str = ""
    memories: List[Memory] = Field(default_factory=list)
    action: Optional[CommandAction] = None

    @property
    def recognized(self) -> bool:
        """Whether the utterance was a memory command."""
        return self.action is not None


class AssistantMemoryContext(BaseModel):
    """A completed conversation turn handed over for memory derivation."""

    user_id: str
    conversation_id: str
    user_prompt: str
    assistant_response: str
    timestamp: datetime = Field(default_factory=utc_now)
    model_used: Optional[str] = None
    tokens_used: Optional[int] = None
    search_performed: bool = False
    memory_enriched: bool = False
