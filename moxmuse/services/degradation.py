"""
GracefulDegradationService - Serves cached or fallback results when a primary
dependency fails.

Per call:
1. cache hit → 'cached' (neither operation runs)
2. primary via ErrorHandler (retry + breaker named after the service) → 'primary'
3. primary failed → service marked down; fallback runs → 'fallback'
4. both failed → the primary DomainError is raised, not the fallback's

Concurrent misses on the same key are not coalesced; each runs the primary.
"""

import inspect
import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, Generic, Literal, TypeVar

from loguru import logger

from moxmuse.services.cache import FallbackCache
from moxmuse.services.error_handler import ErrorHandler
from moxmuse.services.errors import DomainError, ErrorContext, create_error_context
from moxmuse.services.health import HealthReport, ServiceHealthMonitor
from moxmuse.services.retry import RetryPolicy

T = TypeVar("T")

ResultQuality = Literal["primary", "fallback", "cached"]


@dataclass
class FallbackConfig:
    """Configuration for graceful degradation."""

    enable_fallbacks: bool = True
    cache_timeout: timedelta = timedelta(minutes=5)
    max_cache_size: int = 1000


@dataclass
class DegradedResult(Generic[T]):
    """A result tagged with where it came from."""

    result: T
    quality: ResultQuality
    service_name: str | None = None

    @property
    def is_degraded(self) -> bool:
        return self.quality != "primary"


class GracefulDegradationService:
    """
    Cache → primary → fallback orchestration with quality-tagged results.

    Usage:
        service = GracefulDegradationService(handler, monitor)
        outcome = await service.execute_with_fallback(
            lambda: llm.recommend(prompt),
            lambda: rule_based_recommendations(prompt),
            "openai",
            cache_key=f"recommendations_{prompt}",
        )
        if outcome.is_degraded:
            ...
    """

    def __init__(
        self,
        error_handler: ErrorHandler | None = None,
        health_monitor: ServiceHealthMonitor | None = None,
        config: FallbackConfig | None = None,
    ):
        self.config = config or FallbackConfig()
        self._error_handler = error_handler or ErrorHandler()
        self._health_monitor = health_monitor or ServiceHealthMonitor()
        self._cache = FallbackCache(
            max_size=self.config.max_cache_size,
            ttl=self.config.cache_timeout,
        )

    @property
    def health_monitor(self) -> ServiceHealthMonitor:
        return self._health_monitor

    @property
    def error_handler(self) -> ErrorHandler:
        return self._error_handler

    @property
    def cache(self) -> FallbackCache:
        return self._cache

    async def execute_with_fallback(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback_operation: Callable[[], Awaitable[T] | T],
        service_name: str,
        cache_key: str | None = None,
        *,
        context: ErrorContext | None = None,
        policy: RetryPolicy | None = None,
    ) -> DegradedResult[T]:
        """
        Execute `operation` with graceful degradation.

        Args:
            operation: Primary coroutine factory (must be idempotent)
            fallback_operation: Degraded alternative, sync or async
            service_name: Dependency name, used for health and breaker tracking
            cache_key: Fully built cache key; no caching when omitted
            context: Error context; built from the service name if omitted
            policy: Retry policy for the primary operation

        Raises:
            DomainError: The primary failure, when no fallback result is available
        """
        if cache_key and self.config.enable_fallbacks:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return DegradedResult(
                    result=cached.data, quality="cached", service_name=service_name
                )

        if not self._health_monitor.is_registered(service_name):
            self._health_monitor.register_service(service_name)

        context = context or create_error_context(
            f"{service_name}.execute_with_fallback",
            metadata={"service": service_name, "cache_key": cache_key},
        )

        started = time.perf_counter()
        try:
            result = await self._error_handler.execute_with_retry_and_circuit_breaker(
                operation, context, breaker_name=service_name, policy=policy
            )
        except DomainError as e:
            primary_error = e
        else:
            self._health_monitor.mark_service_up(
                service_name, time.perf_counter() - started
            )
            if cache_key and self.config.enable_fallbacks:
                await self._cache.set(cache_key, result, "primary")
            return DegradedResult(
                result=result, quality="primary", service_name=service_name
            )

        self._health_monitor.mark_service_down(service_name, primary_error.message)

        if not self.config.enable_fallbacks:
            raise primary_error

        fallback_failed = False
        try:
            fallback_result = await self._run_fallback(fallback_operation)
        except Exception as fallback_error:
            logger.error(
                f"Both primary and fallback operations failed for {service_name}: "
                f"primary={primary_error.message!r}, "
                f"fallback={type(fallback_error).__name__}: {fallback_error}"
            )
            fallback_failed = True

        if fallback_failed:
            raise primary_error

        logger.info(f"Serving fallback result for {service_name}")
        if cache_key:
            await self._cache.set(cache_key, fallback_result, "fallback")

        return DegradedResult(
            result=fallback_result, quality="fallback", service_name=service_name
        )

    @staticmethod
    async def _run_fallback(fallback_operation: Callable[[], Awaitable[T] | T]) -> T:
        result = fallback_operation()
        if inspect.isawaitable(result):
            result = await result
        return result

    # Service status and monitoring

    def get_service_health(self) -> HealthReport:
        return self._health_monitor.get_health()

    def get_cache_stats(self) -> dict[str, Any]:
        return self._cache.get_stats().to_dict()

    async def clear_cache(self) -> None:
        await self._cache.clear()

    def update_config(self, **changes: Any) -> FallbackConfig:
        """Replace config fields; cache limits take effect immediately."""
        self.config = replace(self.config, **changes)
        self._cache.reconfigure(
            max_size=self.config.max_cache_size, ttl=self.config.cache_timeout
        )
        return self.config

    async def destroy(self) -> None:
        """Stop background health checks and drop cached results."""
        self._health_monitor.destroy()
        await self._cache.clear()
