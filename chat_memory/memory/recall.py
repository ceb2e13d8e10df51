"""
Memory recall with lexical relevance scoring.

Two scoring modes share one shape:
- prompt mode (enrichment): word overlap, phrase containment, provenance
  weight and recency bonus, scaled by importance
- query mode (search): word overlap without stopwords and exact/prefix/
  substring match quality, scaled by importance

Scores are deterministic for identical inputs and a fixed clock.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from .schemas import Memory, utc_now


STOP_WORDS = {
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but",
    "in", "with", "to", "for", "of", "as", "from", "by", "that", "this",
    "it", "what", "how", "when", "where", "who", "why", "are", "was",
    "were", "been", "being", "have", "has", "had", "do", "does", "did",
    "about", "your", "there", "their", "them", "they", "would", "could",
    "should", "will", "just", "than", "then", "into", "some",
}

ENRICHMENT_TOP_K = 5
SEARCH_DEFAULT_LIMIT = 10

SOURCE_WEIGHTS = {"user": 3.0, "assistant": 1.0, "system": 0.0}

_DAY_SECONDS = 86400.0


def tokenize(text: str, drop_stop_words: bool = False) -> Set[str]:
    """
    Split text into lowercase words longer than three characters.

    Args:
        text: Input text
        drop_stop_words: Exclude common function words

    Returns:
        Set of tokens
    """
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    tokens = {w for w in words if len(w) > 3}
    if drop_stop_words:
        tokens -= STOP_WORDS
    return tokens


def clamp_importance(importance: float) -> float:
    """Clamp importance into [0, 1]."""
    return max(0.0, min(1.0, importance))


def _age_days(memory: Memory, now: datetime) -> float:
    return (now - memory.timestamp).total_seconds() / _DAY_SECONDS


def _rank_key(item: Tuple[float, Memory]):
    score, memory = item
    # Higher score first, then newer, then id for a total order
    return (-score, -memory.timestamp.timestamp(), memory.id)


class MemoryRecall:
    """
    Scores and ranks memories against prompts and search queries.

    Stateless apart from an optional fixed clock, which makes recency
    bonuses reproducible in tests.
    """

    def __init__(self, clock=None):
        """
        Initialize recall scorer.

        Args:
            clock: Callable returning the current aware datetime
                (default: utc_now)
        """
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Prompt mode (enrichment)
    # ------------------------------------------------------------------

    def score_for_prompt(self, memory: Memory, prompt: str, now: Optional[datetime] = None) -> float:
        """
        Score a memory against a user prompt.

        +2 per shared word, +10 if the content contains the whole prompt,
        +3/+1 for user/assistant provenance, +2 if younger than a week and
        another +3 if younger than a day; the total is scaled by importance.
        """
        now = now or self.clock()
        prompt_lower = prompt.lower().strip()
        content_lower = memory.content.lower()

        score = 2.0 * len(tokenize(prompt_lower) & tokenize(content_lower))

        if prompt_lower and prompt_lower in content_lower:
            score += 10

        score += SOURCE_WEIGHTS.get(memory.source, 0.0)

        age = _age_days(memory, now)
        if age < 7:
            score += 2
        if age < 1:
            score += 3

        return score * clamp_importance(memory.importance)

    def rank_for_prompt(
        self,
        memories: List[Memory],
        prompt: str,
        top_k: int = ENRICHMENT_TOP_K,
    ) -> List[Tuple[float, Memory]]:
        """
        Select the most relevant memories for a prompt.

        Memories scoring zero or less are discarded.

        Returns:
            (score, memory) pairs, best first, at most ``top_k``
        """
        now = self.clock()
        scored = [(self.score_for_prompt(m, prompt, now), m) for m in memories]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=_rank_key)
        return scored[:top_k]

    # ------------------------------------------------------------------
    # Query mode (search)
    # ------------------------------------------------------------------

    def matches_query(self, memory: Memory, query: str) -> bool:
        """Whether the query occurs in the content, tags or context."""
        q = query.lower().strip()
        if not q:
            return False
        if q in memory.content.lower():
            return True
        if q in " ".join(memory.tags).lower():
            return True
        context = memory.metadata.get("context")
        return isinstance(context, str) and q in context.lower()

    def score_for_query(self, memory: Memory, query: str) -> float:
        """
        Score a memory against a search query.

        +2 per shared non-stopword, then +10 for an exact match, +5 for a
        prefix match or +2 for a substring match; scaled by importance.
        """
        q = query.lower().strip()
        content = memory.content.lower().strip()

        score = 2.0 * len(tokenize(q, drop_stop_words=True) & tokenize(content, drop_stop_words=True))

        if q:
            if content == q:
                score += 10
            elif content.startswith(q):
                score += 5
            elif q in content:
                score += 2

        return score * clamp_importance(memory.importance)

    def search(
        self,
        memories: List[Memory],
        query: str,
        limit: int = SEARCH_DEFAULT_LIMIT,
    ) -> List[Memory]:
        """
        Lexical search with relevance ordering.

        Candidates must contain the query in their content, tags or context;
        low scorers are ordered last rather than dropped.
        """
        candidates = [m for m in memories if self.matches_query(m, query)]
        scored = [(self.score_for_query(m, query), m) for m in candidates]
        scored.sort(key=_rank_key)
        return [m for _, m in scored[:limit]]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def format_memory_context(self, memories: List[Memory]) -> str:
        """
        Render selected memories as a side-channel instruction block.

        Args:
            memories: Memories selected for the prompt

        Returns:
            Formatted block, or "" when there is nothing to add
        """
        if not memories:
            return ""

        lines = ["", "[Memory Context - Not shown to user]"]
        lines.append("Relevant information from previous conversations:")
        for memory in memories:
            label = "User mentioned" if memory.source == "user" else "Previously discussed"
            lines.append(f"- {label}: {memory.content}")
        lines.append(
            "Use this context naturally in your response without explicitly mentioning you remember it."
        )
        lines.append("[End Memory Context]")
        lines.append("")

        return "\n".join(lines)


def confidence_from_scores(scores: List[float]) -> float:
    """Normalize the average score to a [0, 1] confidence."""
    if not scores:
        return 0.0
    average = sum(scores) / len(scores)
    return max(0.0, min(average / 10.0, 1.0))


def score_table(scored: List[Tuple[float, Memory]]) -> Dict[str, float]:
    """Map memory id to score for diagnostics."""
    return {memory.id: round(score, 4) for score, memory in scored}
