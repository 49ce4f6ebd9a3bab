"""Bounded exponential backoff for async operations.

``retry`` never raises for a failed operation; it reports the outcome in a
``RetryResult`` and leaves it to the caller to turn exhaustion into an error
(``retry_or_raise`` does exactly that).
"""

from __future__ import annotations

import asyncio
import functools
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Pattern, TypeVar

import httpx
from pydantic import BaseModel, Field

from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

ShouldRetry = Callable[[BaseException, int], bool]
OnRetry = Callable[[int, BaseException, int], None]
Sleeper = Callable[[int], Awaitable[None]]

_JITTER_RATIO = 0.1
_NETWORK_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "econnrefused",
    "econnreset",
    "socket hang up",
)
_SERVER_ERROR_RE = re.compile(r"\b5\d{2}\b")


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=30_000, gt=0)
    backoff_multiplier: float = Field(default=2, gt=0)
    jitter: bool = True

    @classmethod
    def merged(cls, overrides: RetryConfig | dict[str, Any] | None = None) -> RetryConfig:
        """Build a config from partial overrides layered on the defaults."""
        if overrides is None:
            return cls()
        if isinstance(overrides, RetryConfig):
            return overrides
        return cls(**{k: v for k, v in overrides.items() if v is not None})


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    total_time_ms: int
    data: T | None = None
    error: BaseException | None = None


class RetryExhaustedError(Exception):
    def __init__(
        self, attempts: int, last_error: BaseException, operation_name: str | None = None
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.operation_name = operation_name
        super().__init__(
            f"{operation_name or 'operation'} failed after {attempts} attempts: {last_error}"
        )


def calculate_delay(attempt: int, config: RetryConfig) -> int:
    """Delay in ms before retry number ``attempt + 1`` (``attempt`` is 0-indexed)."""
    capped = min(
        config.initial_delay_ms * config.backoff_multiplier ** attempt,
        config.max_delay_ms,
    )
    if config.jitter:
        capped += random.random() * capped * _JITTER_RATIO
    return int(capped)


async def sleep_ms(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


def default_should_retry(error: BaseException, attempt: int = 0) -> bool:
    """Retry transport failures, 5xx responses and rate limiting."""
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    if any(marker in message for marker in _NETWORK_MARKERS):
        return True
    if _SERVER_ERROR_RE.search(message):
        return True

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if isinstance(status, int):
        return status >= 500 or status == 429
    return False


def always_retry(error: BaseException, attempt: int = 0) -> bool:
    return True


def create_retry_predicate(patterns: Iterable[str | Pattern[str]]) -> ShouldRetry:
    """Retry when the error's class name or message matches any pattern."""
    compiled = list(patterns)

    def predicate(error: BaseException, attempt: int = 0) -> bool:
        name = type(error).__name__
        message = str(error)
        for pattern in compiled:
            if isinstance(pattern, str):
                if name == pattern or pattern in message:
                    return True
            elif pattern.search(message) or pattern.search(name):
                return True
        return False

    return predicate


async def retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | dict[str, Any] | None = None,
    should_retry: ShouldRetry = default_should_retry,
    on_retry: OnRetry | None = None,
    operation_name: str | None = None,
    sleep: Sleeper = sleep_ms,
) -> RetryResult[T]:
    """Run ``fn`` up to ``max_retries + 1`` times with backoff between attempts."""
    cfg = RetryConfig.merged(config)
    start = time.monotonic()
    attempt = 0
    last_error: BaseException | None = None

    while attempt <= cfg.max_retries:
        try:
            data = await fn()
        except Exception as exc:
            last_error = exc
            if attempt >= cfg.max_retries or not should_retry(exc, attempt):
                break
            delay = calculate_delay(attempt, cfg)
            if on_retry is not None:
                _notify(on_retry, attempt + 1, exc, delay, operation_name)
            await sleep(delay)
            attempt += 1
        else:
            return RetryResult(
                success=True,
                data=data,
                attempts=attempt + 1,
                total_time_ms=_elapsed_ms(start),
            )

    return RetryResult(
        success=False,
        error=last_error,
        attempts=attempt + 1,
        total_time_ms=_elapsed_ms(start),
    )


async def retry_or_raise(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | dict[str, Any] | None = None,
    should_retry: ShouldRetry = default_should_retry,
    on_retry: OnRetry | None = None,
    operation_name: str | None = None,
    sleep: Sleeper = sleep_ms,
) -> T:
    result = await retry(fn, config, should_retry, on_retry, operation_name, sleep)
    if not result.success:
        assert result.error is not None
        raise RetryExhaustedError(result.attempts, result.error, operation_name) from result.error
    return result.data  # type: ignore[return-value]


def with_retry(
    config: RetryConfig | dict[str, Any] | None = None,
    operation_name: str | None = None,
    should_retry: ShouldRetry = default_should_retry,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[RetryResult[T]]]]:
    """Decorator form of ``retry`` for coroutine functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[RetryResult[T]]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> RetryResult[T]:
            return await retry(
                lambda: func(*args, **kwargs),
                config=config,
                should_retry=should_retry,
                operation_name=operation_name or func.__name__,
            )

        return wrapper

    return decorator


async def retry_linear(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | dict[str, Any] | None = None,
    **kwargs: Any,
) -> RetryResult[T]:
    """Same delay before every retry, jitter still applies."""
    cfg = RetryConfig.merged(config).model_copy(update={"backoff_multiplier": 1})
    return await retry(fn, cfg, **kwargs)


async def retry_fixed(
    fn: Callable[[], Awaitable[T]],
    delay_ms: int,
    config: RetryConfig | dict[str, Any] | None = None,
    **kwargs: Any,
) -> RetryResult[T]:
    cfg = RetryConfig.merged(config).model_copy(
        update={"initial_delay_ms": delay_ms, "backoff_multiplier": 1, "jitter": False}
    )
    return await retry(fn, cfg, **kwargs)


def _notify(
    on_retry: OnRetry,
    attempt: int,
    error: BaseException,
    delay: int,
    operation_name: str | None,
) -> None:
    # Observer only; a broken observer must not change the retry schedule
    try:
        on_retry(attempt, error, delay)
    except Exception:
        log.exception("retry_observer_error", operation=operation_name, attempt=attempt)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
