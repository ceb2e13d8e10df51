"""
Structured telemetry for memory operations.

Events are emitted as JSON through structlog. They carry ids, counts and
timings only; memory content is never included.
"""

import time
from typing import Any, Dict, Optional

import structlog


structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
logger = structlog.get_logger("chat_memory.telemetry")

# Operation event names
MEMORY_ENRICHED = "memory_enriched"
MEMORIES_EXTRACTED = "memories_extracted"
MEMORY_COMMAND = "memory_command"
ASSISTANT_MEMORY_STORED = "assistant_memory_stored"


def start_timer() -> float:
    """Monotonic start mark for ``elapsed_ms``."""
    return time.perf_counter()


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def log_memory_event(
    event: str,
    user_id: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a memory operation with timing.

    Args:
        event: Event name (e.g., "memory_enriched")
        user_id: Owner of the memories involved
        ms: Duration in milliseconds
        extra: Counts and flags to attach (never memory content)
    """
    logger.info(event, user_id=user_id, duration_ms=ms, **(extra or {}))
