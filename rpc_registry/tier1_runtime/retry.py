"""
rpc_registry.tier1_runtime.retry
───────────────────────────────────
Retry/backoff policy with jitter, backed by Tenacity.

Only session establishment goes through here. Register and Discover never
retry on their own: callers own that policy.

Usage:
    @retry_policy(max_attempts=3, min_wait=1.0, on=[StoreUnavailableError])
    def connect():
        ...
"""
from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, Type

from tenacity import (
    Retrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from rpc_registry.tier0_core.errors import RegistryError


def _is_retryable(exc: BaseException) -> bool:
    """Registry errors declare retryability themselves; anything else is retried."""
    if isinstance(exc, RegistryError):
        return exc.retryable
    return True


def retry_policy(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    jitter: float = 0.5,
    on: list[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter to a blocking call.

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
        on:           Specific exception types to retry on. If None, retries
                      every exception whose ``retryable`` flag allows it.
    """
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if on:
                retry_on = retry_if_exception_type(tuple(on))
            else:
                retry_on = retry_if_exception(_is_retryable)

            for attempt in Retrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait)
                + wait_random(0, jitter),
                retry=retry_on,
                reraise=True,
            ):
                with attempt:
                    return fn(*args, **kwargs)

        return wrapper
    return decorator


__all__ = ["retry_policy"]
