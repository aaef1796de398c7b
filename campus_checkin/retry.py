"""Exponential-backoff retry driver and failure logging."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AppError, classify_error
from .models import ErrorContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 10000
    multiplier: float = 2


DEFAULT_RETRY_CONFIG = RetryConfig()

JITTER_RATIO = 0.1


def backoff_delay_ms(
    attempt: int,
    config: RetryConfig,
    *,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before the retry that follows zero-based ``attempt``."""

    delay = config.initial_delay_ms * config.multiplier**attempt
    jitter = delay * JITTER_RATIO * (rand() * 2 - 1)
    return min(delay + jitter, config.max_delay_ms)


def log_error(exc: BaseException, context: Optional[ErrorContext] = None) -> AppError:
    error = classify_error(exc, context)
    ctx = context or error.context
    logger.error(
        "operation=%s user=%s code=%s retryable=%s message=%s metadata=%s",
        ctx.operation if ctx else "unknown",
        ctx.user_id if ctx else None,
        error.code,
        error.retryable,
        error.message,
        ctx.metadata if ctx else {},
    )
    return error


def handle_error(exc: BaseException, context: Optional[ErrorContext] = None) -> str:
    """Log ``exc`` and return the sentence to show the user."""

    return log_error(exc, context).user_message


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: Optional[ErrorContext] = None,
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    *,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or retries run out.

    ``operation`` must be safe to repeat: nothing is rolled back between
    attempts. The final failure is raised as a classified ``AppError`` chained
    to the original exception. There is no call-site cancellation budget; the
    loop only stops early if the awaiting task itself is cancelled.
    """

    context = context or ErrorContext(operation=getattr(operation, "__name__", "operation"))
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            error = log_error(
                exc,
                context.with_metadata(attempt=attempt + 1, max_retries=config.max_retries),
            )
            if not error.retryable or attempt >= config.max_retries:
                if error is exc:
                    raise
                raise error from exc

            delay = backoff_delay_ms(attempt, config)
            logger.info(
                "Retrying %s in %dms (attempt %d/%d)",
                context.operation,
                round(delay),
                attempt + 2,
                config.max_retries + 1,
            )
            await sleep(delay / 1000)
            attempt += 1


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY_CONFIG",
    "backoff_delay_ms",
    "log_error",
    "handle_error",
    "with_retry",
]
