"""
Pattern-based memory extraction.

Extraction is a strategy: an ordered list of matchers, each pairing a
regular expression with a function that turns a match into statement
text. Any object with an ``extract(text)`` method returning
``ExtractedStatement`` items can replace ``PatternExtractor``.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence


@dataclass
class ExtractedStatement:
    """A statement found in free text."""

    content: str
    pattern_name: str
    confidence: float = 0.8


@dataclass
class PatternMatcher:
    """A named regex plus the function that turns a match into content."""

    name: str
    regex: re.Pattern
    extractor: Callable[[re.Match], str] = field(default=lambda m: m.group(0))
    confidence: float = 0.8

    def find(self, text: str) -> List[ExtractedStatement]:
        found = []
        for match in self.regex.finditer(text):
            content = self.extractor(match).strip()
            if content:
                found.append(ExtractedStatement(content, self.name, self.confidence))
        return found


class StatementExtractor(Protocol):
    """Anything that can pull memorable statements out of text."""

    def extract(self, text: str) -> List[ExtractedStatement]:
        ...


class PatternExtractor:
    """
    Runs matchers in order and collects their statements.

    Duplicate statements (case-insensitive) are reported once, by the first
    matcher that found them. No language processing beyond the patterns is
    performed, so extraction may both miss and over-capture.
    """

    def __init__(self, matchers: Sequence[PatternMatcher], max_results: Optional[int] = None):
        self.matchers = list(matchers)
        self.max_results = max_results

    def extract(self, text: str) -> List[ExtractedStatement]:
        statements: List[ExtractedStatement] = []
        seen = set()
        for matcher in self.matchers:
            for statement in matcher.find(text):
                key = statement.content.lower()
                if key in seen:
                    continue
                seen.add(key)
                statements.append(statement)
                if self.max_results is not None and len(statements) >= self.max_results:
                    return statements
        return statements


# First-person statements made by the user
USER_STATEMENT_MATCHERS = [
    PatternMatcher(
        "self_statement",
        re.compile(r"\bI (?:am|like|prefer|work at|live in|enjoy|hate|dislike) [^.!?\n]+", re.IGNORECASE),
    ),
    PatternMatcher(
        "possessive_statement",
        re.compile(r"\bMy (?:name is|job is|favorite|hobby is) [^.!?\n]+", re.IGNORECASE),
    ),
    PatternMatcher(
        "identity_statement",
        re.compile(r"\bI'm (?:a|an) [^.!?\n]+", re.IGNORECASE),
    ),
]

# What the assistant says it learned about the user
ASSISTANT_LEARNING_MATCHERS = [
    PatternMatcher(
        "understanding",
        re.compile(r"\bI understand (?:that )?you [^.!?\n]+", re.IGNORECASE),
        confidence=0.7,
    ),
    PatternMatcher(
        "user_mentioned",
        re.compile(r"\bYou (?:mentioned|said|told me) (?:that )?[^.!?\n]+", re.IGNORECASE),
        confidence=0.7,
    ),
    PatternMatcher(
        "inference",
        re.compile(r"\b(?:So|It seems) you [^.!?\n]+", re.IGNORECASE),
        confidence=0.6,
    ),
    PatternMatcher(
        "commitment",
        re.compile(r"\bI'll remember (?:that )?[^.!?\n]+", re.IGNORECASE),
        confidence=0.9,
    ),
]


def default_user_extractor() -> PatternExtractor:
    """Extractor for user statements in conversation text."""
    return PatternExtractor(USER_STATEMENT_MATCHERS)


def default_assistant_extractor() -> PatternExtractor:
    """Extractor for learnings stated in assistant responses (max 3)."""
    return PatternExtractor(ASSISTANT_LEARNING_MATCHERS, max_results=3)


# ============================================================================
# Topics
# ============================================================================

_TOPIC_PATTERNS = [
    re.compile(r"\babout ([a-z]+(?:\s+[a-z]+)?)", re.IGNORECASE),
    re.compile(r"\bregarding ([a-z]+(?:\s+[a-z]+)?)", re.IGNORECASE),
    re.compile(r"\bdiscuss(?:ing)? ([a-z]+(?:\s+[a-z]+)?)", re.IGNORECASE),
]

_TOPIC_STOP_WORDS = {
    "about", "would", "could", "should", "there", "where", "which",
    "their", "these", "those", "because", "before", "after", "really",
}

MAX_TOPICS = 5


def extract_topics(text: str, max_topics: int = MAX_TOPICS) -> List[str]:
    """
    Pull a handful of topic tags out of free text.

    Phrases following "about", "regarding" or "discussing" come first, then
    up to three long words that are not stopwords.

    Args:
        text: Input text
        max_topics: Maximum tags to return

    Returns:
        Lowercase, de-duplicated topics in discovery order
    """
    topics: List[str] = []

    for pattern in _TOPIC_PATTERNS:
        topics.extend(match.group(1).lower() for match in pattern.finditer(text))

    words = re.sub(r"[^\w\s-]", " ", text.lower()).split()
    significant = [w for w in words if len(w) > 5 and w not in _TOPIC_STOP_WORDS]
    topics.extend(significant[:3])

    unique = list(dict.fromkeys(topics))
    return unique[:max_topics]
