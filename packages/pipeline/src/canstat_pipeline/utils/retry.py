"""
utils/retry.py — Opt-in exponential-backoff retry for callers.

No pipeline stage retries on its own; a RetrievalError propagates the first
time. Callers that want retries wrap their own call with this decorator
(the CLI does when given --retries).

Usage:
    from canstat_pipeline.utils.retry import with_retry

    @with_retry(max_attempts=3, base_delay=1.0)
    async def load() -> PipelineResult:
        return await pipeline.run_identifier("18-10-0004-01")
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from canstat_pipeline.errors import RetrievalError

log = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: type[Exception] | tuple[type[Exception], ...] = RetrievalError,
) -> Callable[[F], F]:
    """
    Decorator that retries an async function with exponential backoff.

    Delays: base_delay * 2^(attempt-1), capped at max_delay.

    Args:
        max_attempts: Total attempts before the last error is re-raised.
        base_delay:   Initial delay in seconds.
        max_delay:    Maximum delay cap in seconds.
        retry_on:     Exception type(s) that trigger a retry. Anything else
                      propagates immediately.

    Returns:
        Decorated async function.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt_log = log.bind(function=fn.__qualname__)
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=base_delay, max=max_delay),
                retry=retry_if_exception_type(retry_on),
                reraise=True,
            ):
                with attempt:
                    attempt_num = attempt.retry_state.attempt_number
                    if attempt_num > 1:
                        attempt_log.warning(
                            "retry_attempt",
                            attempt=attempt_num,
                            max_attempts=max_attempts,
                        )
                    try:
                        return await fn(*args, **kwargs)
                    except retry_on as exc:
                        if attempt_num >= max_attempts:
                            attempt_log.error(
                                "retry_exhausted",
                                max_attempts=max_attempts,
                                error=str(exc),
                            )
                        raise

        return wrapper  # type: ignore[return-value]

    return decorator
