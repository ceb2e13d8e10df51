"""
Explicit memory command grammar.

Commands are recognized by prefix/substring matching on the raw utterance:

    remember|save|store <content>          -> save
    clear ... memor...                     -> clear
    memory stats | memory status           -> stats
    recall [<query>]                       -> recall
    what do you remember [about <query>]   -> recall
    ... my memories                        -> recall (recent, no query)

Anything else is ordinary conversation.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .schemas import CommandAction


_SAVE_PREFIX = re.compile(r"^(?:remember|save|store)\b\s*(?:that\s+)?", re.IGNORECASE)
_RECALL_PREFIX = re.compile(r"^(?:recall|what do you remember)\b(?:\s+about\b)?\s*", re.IGNORECASE)

# Utterances that are nothing but a memory command
PURE_COMMAND_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^remember\s",
        r"^save\s",
        r"^store\s",
        r"^recall",
        r"^what do you remember",
        r"^show.*memories",
        r"^list.*memories",
        r"^clear.*memories",
        r"^delete.*memories",
        r"^memory (?:stats|status)",
    )
]


@dataclass
class ParsedCommand:
    """A recognized command and its argument."""

    action: CommandAction
    argument: str = ""


def parse_command(text: str) -> Optional[ParsedCommand]:
    """
    Recognize an explicit memory command.

    Args:
        text: Raw user utterance

    Returns:
        ParsedCommand, or None when the utterance is not a command
    """
    stripped = text.strip()
    lower = stripped.lower()

    if _SAVE_PREFIX.match(stripped):
        return ParsedCommand("save", _SAVE_PREFIX.sub("", stripped, count=1).strip())

    # Checked before recall so "clear my memories" is not read as a recall
    if "clear" in lower and "memor" in lower:
        return ParsedCommand("clear")

    if "memory stats" in lower or "memory status" in lower:
        return ParsedCommand("stats")

    if _RECALL_PREFIX.match(stripped):
        query = _RECALL_PREFIX.sub("", stripped, count=1).strip().rstrip("?").strip()
        return ParsedCommand("recall", query)

    if "my memories" in lower:
        return ParsedCommand("recall")

    return None


def is_pure_command(text: str) -> bool:
    """Whether the utterance should be answered by the command alone."""
    stripped = text.strip()
    return any(p.search(stripped) for p in PURE_COMMAND_PATTERNS)
