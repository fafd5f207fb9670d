"""
Tests for GracefulDegradationService.
"""
from datetime import timedelta

import pytest

from moxmuse.services.circuit_breaker import CircuitBreakerConfig
from moxmuse.services.degradation import FallbackConfig, GracefulDegradationService
from moxmuse.services.error_handler import ErrorHandler
from moxmuse.services.errors import DomainError, ErrorFactory, ErrorKind, create_error_context
from moxmuse.services.health import ServiceHealthMonitor
from moxmuse.services.retry import RetryPolicy


FAST = RetryPolicy(
    max_attempts=3,
    base_delay=timedelta(milliseconds=1),
    max_delay=timedelta(milliseconds=2),
)


class Call:
    """Records invocations; raises `error` if given, else returns `value`."""

    def __init__(self, value=None, error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


def make_service(**config) -> GracefulDegradationService:
    handler = ErrorHandler(
        retry_policy=FAST,
        breaker_config=CircuitBreakerConfig(failure_threshold=50),
    )
    return GracefulDegradationService(
        error_handler=handler,
        health_monitor=ServiceHealthMonitor(),
        config=FallbackConfig(**config),
    )


class TestPrimaryPath:
    @pytest.mark.asyncio
    async def test_primary_result_is_cached(self):
        service = make_service()
        primary = Call({"cards": ["Sol Ring"]})
        fallback = Call({"cards": []})

        outcome = await service.execute_with_fallback(
            primary, fallback, "openai", cache_key="deck_atraxa"
        )

        assert outcome.result == {"cards": ["Sol Ring"]}
        assert outcome.quality == "primary"
        assert outcome.is_degraded is False
        assert fallback.calls == 0
        assert (await service.cache.get("deck_atraxa")).quality == "primary"
        assert service.health_monitor.is_service_available("openai")
        assert service.health_monitor.get_service_status("openai").last_response_time is not None

    @pytest.mark.asyncio
    async def test_cache_hit_runs_nothing(self):
        service = make_service()
        await service.execute_with_fallback(Call("first"), Call("fb"), "openai", "k")
        primary, fallback = Call("second"), Call("fb")

        outcome = await service.execute_with_fallback(primary, fallback, "openai", "k")

        assert outcome.result == "first"
        assert outcome.quality == "cached"
        assert outcome.is_degraded is True
        assert primary.calls == 0
        assert fallback.calls == 0

    @pytest.mark.asyncio
    async def test_no_cache_key_means_no_caching(self):
        service = make_service()
        await service.execute_with_fallback(Call(1), Call(2), "openai")
        assert service.cache.size() == 0

    @pytest.mark.asyncio
    async def test_unknown_service_is_registered(self):
        service = make_service()
        assert not service.health_monitor.is_registered("edhrec")
        await service.execute_with_fallback(Call(1), Call(2), "edhrec")
        assert service.health_monitor.is_registered("edhrec")


class TestFallbackPath:
    @pytest.mark.asyncio
    async def test_llm_timeout_serves_fallback(self):
        service = make_service()
        primary = Call(error=Exception("timeout"))

        outcome = await service.execute_with_fallback(
            primary, lambda: {"cards": []}, "llm", cache_key="recs_atraxa"
        )

        assert outcome.result == {"cards": []}
        assert outcome.quality == "fallback"
        assert primary.calls == FAST.max_attempts
        assert service.health_monitor.is_service_available("llm") is False
        assert (await service.cache.get("recs_atraxa")).quality == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_result_is_served_from_cache(self):
        service = make_service()
        ctx = create_error_context("recs")
        await service.execute_with_fallback(
            Call(error=ErrorFactory.service_unavailable(ctx)), Call("rules"), "openai", "k"
        )
        primary, fallback = Call("fresh"), Call("rules")

        outcome = await service.execute_with_fallback(primary, fallback, "openai", "k")

        assert outcome.quality == "cached"
        assert outcome.result == "rules"
        assert primary.calls == 0
        assert fallback.calls == 0

    @pytest.mark.asyncio
    async def test_async_fallback(self):
        service = make_service()
        outcome = await service.execute_with_fallback(
            Call(error=KeyError("x")), Call("async fb"), "database"
        )
        assert outcome.quality == "fallback"
        assert outcome.result == "async fb"

    @pytest.mark.asyncio
    async def test_both_fail_raises_primary_error(self):
        service = make_service()
        ctx = create_error_context("deck.save")
        primary = Call(error=ErrorFactory.storage_error(ctx))
        fallback = Call(error=RuntimeError("fallback broke too"))

        with pytest.raises(DomainError) as exc_info:
            await service.execute_with_fallback(primary, fallback, "database", "k")

        assert exc_info.value.kind is ErrorKind.STORAGE_ERROR
        assert fallback.calls == 1
        assert service.cache.size() == 0

    @pytest.mark.asyncio
    async def test_disabled_fallbacks_reraise(self):
        service = make_service(enable_fallbacks=False)
        ctx = create_error_context("deck.save")
        fallback = Call("unused")

        with pytest.raises(DomainError) as exc_info:
            await service.execute_with_fallback(
                Call(error=ErrorFactory.forbidden(ctx)), fallback, "database", "k"
            )

        assert exc_info.value.kind is ErrorKind.FORBIDDEN
        assert fallback.calls == 0
        assert service.health_monitor.is_service_available("database") is False


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_service_health_and_cache_stats(self):
        service = make_service()
        service.health_monitor.register_service("openai")
        service.health_monitor.register_service("database")
        await service.execute_with_fallback(
            Call(error=KeyError("x")), Call("fb"), "openai", "k"
        )

        assert service.get_service_health().overall == "partial"
        assert service.get_cache_stats()["size"] == 1

        await service.clear_cache()
        assert service.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_update_config(self):
        service = make_service()
        for key in ("a", "b", "c"):
            await service.execute_with_fallback(Call(key), Call("fb"), "openai", key)

        config = service.update_config(max_cache_size=1, enable_fallbacks=False)

        assert config.enable_fallbacks is False
        assert service.cache.keys() == ["c"]

    @pytest.mark.asyncio
    async def test_destroy(self):
        service = make_service()
        service.health_monitor.start()
        await service.execute_with_fallback(Call(1), Call(2), "openai", "k")

        await service.destroy()

        assert not service.health_monitor.is_running()
        assert service.cache.size() == 0
