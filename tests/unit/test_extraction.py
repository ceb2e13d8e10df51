"""Unit tests for pattern extraction and topic tagging."""

import re

from chat_memory.memory.extraction import (
    PatternExtractor,
    PatternMatcher,
    default_assistant_extractor,
    default_user_extractor,
    extract_topics,
)


def contents(statements):
    return [s.content for s in statements]


def test_user_statements_are_extracted():
    text = "Hi there. I like TypeScript programming. My name is Dana! I'm a backend engineer?"

    found = contents(default_user_extractor().extract(text))

    assert "I like TypeScript programming" in found
    assert "My name is Dana" in found
    assert "I'm a backend engineer" in found


def test_extraction_stops_at_sentence_end():
    found = contents(default_user_extractor().extract("I prefer dark mode. The weather is nice."))
    assert found == ["I prefer dark mode"]


def test_extraction_is_case_insensitive():
    found = contents(default_user_extractor().extract("i live in Seattle"))
    assert found == ["i live in Seattle"]


def test_plain_conversation_yields_nothing():
    assert default_user_extractor().extract("What's the capital of France?") == []


def test_statement_metadata():
    statement = default_user_extractor().extract("I work at Acme Corp.")[0]
    assert statement.pattern_name == "self_statement"
    assert statement.confidence == 0.8


def test_duplicates_reported_once():
    found = contents(default_user_extractor().extract("I like tea. I like tea."))
    assert found == ["I like tea"]


def test_custom_matcher_with_group_extractor():
    matcher = PatternMatcher(
        "allergy",
        re.compile(r"allergic to (\w+)", re.IGNORECASE),
        extractor=lambda m: f"Allergy: {m.group(1)}",
    )

    found = contents(PatternExtractor([matcher]).extract("I'm allergic to peanuts"))

    assert found == ["Allergy: peanuts"]


def test_assistant_learnings_capped_at_three():
    response = (
        "I understand that you prefer Python. You mentioned you live in Oslo. "
        "So you work remotely. I'll remember that you like jazz."
    )

    found = contents(default_assistant_extractor().extract(response))

    assert found == [
        "I understand that you prefer Python",
        "You mentioned you live in Oslo",
        "So you work remotely",
    ]


def test_topics_from_patterns_then_long_words():
    topics = extract_topics("Can we talk about machine learning regarding neural networks")

    assert topics[0] == "machine learning"
    assert topics[1] == "neural networks"
    assert len(topics) <= 5


def test_topics_skip_stop_words_and_duplicates():
    topics = extract_topics("should should because programming programming")
    assert topics == ["programming"]


def test_topics_empty_text():
    assert extract_topics("") == []
