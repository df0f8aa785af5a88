"""Scribe Pipeline - Retry with exponential backoff for direct operations.

Applies only to synchronous work that is not delegated to the Task Registry
(for example uploading a finished transcript to the export store). Queued
stage tasks are never retried automatically.

Retry Semantics:
----------------
MAX_UPLOAD_RETRIES = 3 retries after the initial attempt, so 4 calls total.
The delay before retry n (0-based) is RETRY_BASE_DELAY_MS * 2**n:
  - attempt 1 fails -> wait 1000 ms
  - attempt 2 fails -> wait 2000 ms
  - attempt 3 fails -> wait 4000 ms
  - attempt 4 fails -> the error is re-raised to the caller
A failure whose message does not match the retryable classifier is re-raised
immediately.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from scribe_pipeline.config import (
    MAX_UPLOAD_RETRIES,
    RETRY_BASE_DELAY_MS,
    RETRYABLE_ERROR_PATTERNS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_RE = re.compile("|".join(RETRYABLE_ERROR_PATTERNS), re.IGNORECASE)


def is_retryable_error(error: BaseException | str) -> bool:
    """Classify an error as transient (network/timeout/5xx/rate limit/quota)."""
    message = error if isinstance(error, str) else str(error)
    return _RETRYABLE_RE.search(message) is not None


def backoff_delay_ms(retry_index: int, base_delay_ms: int = RETRY_BASE_DELAY_MS) -> int:
    """Delay before retry number retry_index (0-based), in milliseconds."""
    return base_delay_ms * (2**retry_index)


@dataclass
class RetryStats:
    """Bookkeeping for one call_with_retry invocation."""

    attempts: int = 0
    total_delay_ms: int = 0
    delays_ms: list[int] = field(default_factory=list)


def call_with_retry(
    operation: Callable[[], T],
    *,
    max_retries: int = MAX_UPLOAD_RETRIES,
    base_delay_ms: int = RETRY_BASE_DELAY_MS,
    classifier: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
    stats: RetryStats | None = None,
) -> T:
    """Run operation, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable to run.
        max_retries: Retries after the first attempt.
        base_delay_ms: Delay before the first retry; doubles each retry.
        classifier: Returns True if an exception is worth retrying.
        sleep: Sleep function taking seconds (injected by tests).
        description: Label for log messages.
        stats: Optional RetryStats filled in with attempts and delays.

    Returns:
        The operation's return value.

    Raises:
        Exception: The last error raised by operation, once it is not
            retryable or the retries are exhausted.
    """
    stats = stats if stats is not None else RetryStats()
    attempt = 0

    while True:
        stats.attempts = attempt + 1
        try:
            return operation()
        except Exception as e:
            if attempt >= max_retries or not classifier(e):
                logger.error(
                    "%s failed (attempt %d/%d), giving up: %s",
                    description,
                    attempt + 1,
                    max_retries + 1,
                    e,
                )
                raise

            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            stats.delays_ms.append(delay_ms)
            stats.total_delay_ms += delay_ms
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %dms: %s",
                description,
                attempt + 1,
                max_retries + 1,
                delay_ms,
                e,
            )
            sleep(delay_ms / 1000.0)
            attempt += 1
