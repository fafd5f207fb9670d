"""
RetryManager - Re-invokes idempotent operations with bounded exponential backoff.

Delay before retry n (1-based) is:
    min(base_delay * backoff_multiplier ** (n - 1), max_delay)

No jitter is applied.
"""

import asyncio
import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from moxmuse.services.errors import DomainError, ErrorContext, ErrorFactory

T = TypeVar("T")

ErrorWrapper = Callable[[BaseException, ErrorContext], DomainError]

DEFAULT_RETRYABLE_ERRORS = frozenset(
    {
        "TIMEOUT",
        "INTERNAL_SERVER_ERROR",
        "BAD_GATEWAY",
        "SERVICE_UNAVAILABLE",
        "GATEWAY_TIMEOUT",
        "NETWORK_ERROR",
        "STORAGE_ERROR",
    }
)

_SEPARATORS = re.compile(r"[\s\-]+")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behaviour."""

    max_attempts: int = 3
    base_delay: timedelta = timedelta(seconds=1)
    max_delay: timedelta = timedelta(seconds=10)
    backoff_multiplier: float = 2.0
    retryable_errors: frozenset[str] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_ERRORS
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def merge(self, **overrides: Any) -> "RetryPolicy":
        """Return a copy with the given fields replaced (None values ignored)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "retryable_errors" in changes:
            changes["retryable_errors"] = frozenset(changes["retryable_errors"])
        return replace(self, **changes) if changes else self

    def delay_for(self, attempt: int) -> timedelta:
        """Backoff delay after the given failed attempt (1-based)."""
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


class RetryStats:
    """Counters for retry activity."""

    def __init__(self):
        self.calls: int = 0
        self.retries: int = 0
        self.exhausted: int = 0
        self.succeeded_after_retry: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "retries": self.retries,
            "exhausted": self.exhausted,
            "succeeded_after_retry": self.succeeded_after_retry,
        }


class RetryManager:
    """
    Bounded retry executor.

    The operation MUST be idempotent: it may run up to `max_attempts` times.

    Usage:
        retry = RetryManager()
        data = await retry.execute_with_retry(
            lambda: client.fetch(card_id),
            create_error_context("card.fetch"),
            max_attempts=5,
        )
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        wrap_error: ErrorWrapper | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._wrap_error = wrap_error or ErrorFactory.wrap
        self._stats = RetryStats()

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        policy: RetryPolicy | None = None,
        **overrides: Any,
    ) -> T:
        """
        Run `operation`, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory
            context: Error context for logging and wrapping
            policy: Full policy replacing the manager default
            **overrides: Individual RetryPolicy fields to override

        Raises:
            DomainError: On a non-retryable failure or when attempts run out
        """
        policy = (policy or self.policy).merge(**overrides)
        self._stats.calls += 1

        for attempt in range(1, policy.max_attempts + 1):
            try:
                result = await operation()
            except Exception as e:
                if attempt == policy.max_attempts:
                    self._stats.exhausted += 1
                    raise self._wrap_error(e, context)

                if not self.is_retryable(e, policy):
                    raise self._wrap_error(e, context)

                delay = policy.delay_for(attempt)
                self._stats.retries += 1
                logger.warning(
                    f"Retry attempt {attempt}/{policy.max_attempts} for "
                    f"{context.operation} after {delay.total_seconds():.3f}s: "
                    f"{type(e).__name__}: {e}"
                )
                await asyncio.sleep(delay.total_seconds())
                continue

            if attempt > 1:
                self._stats.succeeded_after_retry += 1
            return result

        raise ValueError(f"max_attempts must be at least 1, got {policy.max_attempts}")

    @staticmethod
    def is_retryable(error: BaseException, policy: RetryPolicy) -> bool:
        """DomainErrors carry their own flag; raw errors are matched by name/message."""
        if isinstance(error, DomainError):
            return error.retryable

        text = _SEPARATORS.sub("_", f"{type(error).__name__} {error}".upper())
        return any(code.upper() in text for code in policy.retryable_errors)

    def get_stats(self) -> RetryStats:
        return self._stats
