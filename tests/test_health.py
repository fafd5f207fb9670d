"""
Tests for ServiceHealthMonitor and the health roll-up.
"""
import pytest

from moxmuse.services.health import (
    ServiceHealthMonitor,
    ServiceStatus,
    credential_probe,
    summarize,
)


def statuses(*available: bool) -> list[ServiceStatus]:
    return [ServiceStatus(name=f"s{i}", available=a) for i, a in enumerate(available)]


class TestSummarize:
    @pytest.mark.parametrize(
        "available,expected",
        [
            ((), "critical"),
            ((True, True, True), "healthy"),
            ((True, True, False), "partial"),
            ((True, False), "partial"),
            ((True, False, False), "degraded"),
            ((False, False), "critical"),
        ],
    )
    def test_overall(self, available, expected):
        assert summarize(statuses(*available)).overall == expected

    def test_report_to_dict(self):
        report = summarize(statuses(True))
        data = report.to_dict()
        assert data["overall"] == "healthy"
        assert data["services"][0]["name"] == "s0"
        assert isinstance(data["services"][0]["last_check"], str)


class TestStatusTracking:
    def test_registered_services_start_available(self):
        monitor = ServiceHealthMonitor()
        monitor.register_service("openai")
        assert monitor.is_registered("openai")
        assert monitor.is_service_available("openai")
        assert monitor.get_service_status("openai").error_count == 0

    def test_unknown_service_is_unavailable(self):
        monitor = ServiceHealthMonitor()
        assert monitor.is_service_available("nope") is False
        assert monitor.get_service_status("nope") is None

    def test_mark_down_and_up(self):
        monitor = ServiceHealthMonitor()
        monitor.register_service("database")

        monitor.mark_service_down("database", "connection refused")
        monitor.mark_service_down("database", "connection refused")
        status = monitor.get_service_status("database")
        assert status.available is False
        assert status.error_count == 2
        assert status.last_error == "connection refused"

        monitor.mark_service_up("database", response_time=0.01)
        status = monitor.get_service_status("database")
        assert status.available is True
        assert status.error_count == 0
        assert status.last_error is None
        assert status.last_response_time == 0.01

    def test_marking_unknown_service_is_ignored(self):
        monitor = ServiceHealthMonitor()
        monitor.mark_service_down("ghost", "boom")
        monitor.mark_service_up("ghost")
        assert monitor.get_all_service_status() == []

    def test_get_health_rolls_up(self):
        monitor = ServiceHealthMonitor()
        for name in ("openai", "database", "scryfall"):
            monitor.register_service(name)
        monitor.mark_service_down("openai", "timeout")
        monitor.mark_service_down("scryfall", "timeout")
        assert monitor.get_health().overall == "degraded"

    def test_empty_monitor_is_critical(self):
        assert ServiceHealthMonitor().get_health().overall == "critical"


class TestHealthChecks:
    @pytest.mark.asyncio
    async def test_probes_update_status(self):
        monitor = ServiceHealthMonitor()

        async def healthy():
            return None

        async def broken():
            raise ConnectionError("refused")

        monitor.register_service("scryfall", healthy)
        monitor.register_service("openai", broken)
        monitor.register_service("database")
        monitor.mark_service_down("scryfall", "earlier failure")

        await monitor.perform_health_checks()

        assert monitor.is_service_available("scryfall")
        assert monitor.get_service_status("scryfall").last_response_time is not None
        openai = monitor.get_service_status("openai")
        assert openai.available is False
        assert "ConnectionError" in openai.last_error
        # No probe means no polling
        assert monitor.is_service_available("database")

    @pytest.mark.asyncio
    async def test_credential_probe(self):
        with pytest.raises(RuntimeError):
            await credential_probe("OPENAI_API_KEY", "")()
        with pytest.raises(RuntimeError):
            await credential_probe("OPENAI_API_KEY", "abc", prefix="sk-")()
        await credential_probe("OPENAI_API_KEY", "sk-test", prefix="sk-")()

    @pytest.mark.asyncio
    async def test_start_and_destroy(self):
        monitor = ServiceHealthMonitor(check_interval_seconds=3600)
        monitor.start()
        assert monitor.is_running()
        monitor.start()  # second start is a no-op

        monitor.destroy()
        assert not monitor.is_running()
        monitor.destroy()
