"""
Utilities
=========

Small helpers shared by the Paperless client and the OCR engine.

Currently, it contains a `retry` decorator for handling transient network
errors with capped exponential backoff and jitter, and a helper that builds
unique, time-ordered identifiers for processing sessions.
"""

import random
import secrets
import time
from functools import wraps
from typing import Callable, Type, TypeVar

import structlog

log = structlog.get_logger(__name__)
T = TypeVar("T")


def retry(
    retryable_exceptions: tuple[Type[Exception], ...],
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    A decorator that retries a method call on specific exceptions.

    The decorated method's instance must expose ``settings.MAX_RETRIES`` and
    ``settings.MAX_RETRY_BACKOFF_SECONDS``.

    Args:
        retryable_exceptions: A tuple of exception types that should trigger a retry.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> T:
            settings = self.settings
            if settings.MAX_RETRIES < 1:
                raise ValueError("MAX_RETRIES must be >= 1")
            for attempt in range(1, settings.MAX_RETRIES + 1):
                try:
                    return func(self, *args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == settings.MAX_RETRIES:
                        log.error(
                            "Call failed after all attempts",
                            func=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    log.warning(
                        "Call failed; retrying",
                        func=func.__name__,
                        error=str(e),
                        attempt=attempt,
                        max_retries=settings.MAX_RETRIES,
                    )
                    _sleep_backoff(attempt, settings)
            # Unreachable while MAX_RETRIES >= 1
            raise RuntimeError("Retry loop exited unexpectedly.")

        return wrapper

    return decorator


def _sleep_backoff(attempt: int, settings) -> None:
    """Sleep with exponential backoff and jitter, capped by the settings."""
    delay = min(
        (2**attempt) * random.uniform(0.8, 1.2),
        float(settings.MAX_RETRY_BACKOFF_SECONDS),
    )
    log.info(
        "Sleeping before retry",
        delay=round(delay, 1),
        attempt=attempt,
        max_retries=settings.MAX_RETRIES,
    )
    time.sleep(delay)


def new_session_id(prefix: str = "ocr") -> str:
    """Return an opaque id built from the current time and a random suffix."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
