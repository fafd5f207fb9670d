"""
Process-level wiring for the resilience core.

Construct one runtime at process start, pass its components to collaborators
by reference, and call `shutdown()` on exit (or between tests).
"""

from dataclasses import dataclass
from datetime import timedelta

from loguru import logger

from moxmuse.services.circuit_breaker import CircuitBreakerConfig
from moxmuse.services.degradation import FallbackConfig, GracefulDegradationService
from moxmuse.services.error_handler import ErrorHandler
from moxmuse.services.health import (
    ServiceHealthMonitor,
    credential_probe,
    http_probe,
)
from moxmuse.services.retry import RetryPolicy
from moxmuse.settings import Settings, global_settings


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=timedelta(milliseconds=settings.retry_base_delay_ms),
        max_delay=timedelta(milliseconds=settings.retry_max_delay_ms),
        backoff_multiplier=settings.retry_backoff_multiplier,
    )


def breaker_config_from_settings(settings: Settings) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=timedelta(seconds=settings.breaker_reset_timeout_seconds),
        monitoring_period=timedelta(
            seconds=settings.breaker_monitoring_period_seconds
        ),
    )


def fallback_config_from_settings(settings: Settings) -> FallbackConfig:
    return FallbackConfig(
        enable_fallbacks=settings.fallback_enabled,
        cache_timeout=timedelta(seconds=settings.fallback_cache_timeout_seconds),
        max_cache_size=settings.fallback_cache_max_size,
    )


@dataclass
class ResilienceRuntime:
    """Explicitly constructed handler, monitor and degradation service."""

    error_handler: ErrorHandler
    health_monitor: ServiceHealthMonitor
    degradation: GracefulDegradationService

    def start(self) -> None:
        """Start background health polling. Requires a running event loop."""
        self.health_monitor.start()

    async def shutdown(self) -> None:
        await self.degradation.destroy()
        self.error_handler.circuit_breakers.reset_all()
        logger.info("Resilience runtime shut down")


def register_default_services(monitor: ServiceHealthMonitor, settings: Settings) -> None:
    monitor.register_service(
        "openai", credential_probe("OPENAI_API_KEY", settings.openai_api_key, "sk-")
    )
    monitor.register_service("database")
    monitor.register_service("scryfall", http_probe(settings.scryfall_api_url))


def create_runtime(
    settings: Settings | None = None,
    register_defaults: bool = True,
) -> ResilienceRuntime:
    """Build all components from settings. Nothing runs until `start()`."""
    settings = settings or global_settings

    error_handler = ErrorHandler(
        retry_policy=retry_policy_from_settings(settings),
        breaker_config=breaker_config_from_settings(settings),
    )
    health_monitor = ServiceHealthMonitor(
        check_interval_seconds=settings.health_check_interval_seconds
    )
    if register_defaults:
        register_default_services(health_monitor, settings)

    degradation = GracefulDegradationService(
        error_handler=error_handler,
        health_monitor=health_monitor,
        config=fallback_config_from_settings(settings),
    )
    return ResilienceRuntime(
        error_handler=error_handler,
        health_monitor=health_monitor,
        degradation=degradation,
    )
