"""
ServiceHealthMonitor - Tracks per-service availability.

Status is fed from two directions:
- passive: an APScheduler interval job runs each service's probe
- active: the degradation layer marks services up/down on live call outcomes

`is_service_available` is advisory only; nothing in the core blocks on it.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

Probe = Callable[[], Awaitable[None]]
OverallHealth = Literal["healthy", "partial", "degraded", "critical"]


@dataclass
class ServiceStatus:
    """Availability record for one service."""

    name: str
    available: bool = True
    last_check: datetime = field(default_factory=datetime.now)
    last_response_time: float | None = None  # seconds
    error_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_check"] = self.last_check.isoformat()
        return data


@dataclass
class HealthReport:
    """Roll-up of all service statuses."""

    overall: OverallHealth
    services: list[ServiceStatus]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "services": [s.to_dict() for s in self.services],
        }


def summarize(services: list[ServiceStatus]) -> HealthReport:
    """
    critical: nothing up (including nothing registered)
    degraded: fewer than half up
    partial: at least half up
    healthy: every service up
    """
    total = len(services)
    available = sum(1 for s in services if s.available)

    if available == 0:
        overall: OverallHealth = "critical"
    elif available < total * 0.5:
        overall = "degraded"
    elif available < total:
        overall = "partial"
    else:
        overall = "healthy"

    return HealthReport(overall=overall, services=services)


def credential_probe(name: str, value: str | None, prefix: str | None = None) -> Probe:
    """Probe that fails when a credential is missing or malformed."""

    async def probe() -> None:
        if not value:
            raise RuntimeError(f"{name} not configured")
        if prefix and not value.startswith(prefix):
            raise RuntimeError(f"{name} has unexpected format")

    return probe


def http_probe(url: str, timeout: float = 5.0) -> Probe:
    """Probe that fails unless `url` answers with a non-5xx status."""

    async def probe() -> None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            response = await client.get(url)
            if response.status_code >= 500:
                raise RuntimeError(f"{url} returned HTTP {response.status_code}")

    return probe


class ServiceHealthMonitor:
    """
    Per-service availability tracker with a background polling job.

    Usage:
        monitor = ServiceHealthMonitor(check_interval_seconds=60)
        monitor.register_service("openai", credential_probe("OPENAI_API_KEY", key, "sk-"))
        monitor.start()
        ...
        monitor.destroy()
    """

    JOB_ID = "service_health_check"

    def __init__(self, check_interval_seconds: float = 60):
        self.check_interval_seconds = check_interval_seconds
        self._statuses: dict[str, ServiceStatus] = {}
        self._probes: dict[str, Probe] = {}
        self._scheduler: AsyncIOScheduler | None = None

    def register_service(self, name: str, probe: Probe | None = None) -> None:
        """Seed `name` as available, optionally with a polling probe."""
        self._statuses[name] = ServiceStatus(name=name)
        if probe is not None:
            self._probes[name] = probe
        else:
            self._probes.pop(name, None)
        logger.debug(f"Registered service: {name}")

    def is_registered(self, name: str) -> bool:
        return name in self._statuses

    def mark_service_down(self, name: str, error: str | None = None) -> None:
        status = self._statuses.get(name)
        if status is None:
            return
        status.available = False
        status.last_check = datetime.now()
        status.error_count += 1
        status.last_error = error
        logger.warning(f"Service {name} marked as down: {error}")

    def mark_service_up(self, name: str, response_time: float | None = None) -> None:
        status = self._statuses.get(name)
        if status is None:
            return
        if not status.available:
            logger.info(f"Service {name} is back up")
        status.available = True
        status.last_check = datetime.now()
        status.last_response_time = response_time
        status.error_count = 0
        status.last_error = None

    def is_service_available(self, name: str) -> bool:
        status = self._statuses.get(name)
        return status.available if status else False

    def get_service_status(self, name: str) -> ServiceStatus | None:
        return self._statuses.get(name)

    def get_all_service_status(self) -> list[ServiceStatus]:
        return list(self._statuses.values())

    def get_health(self) -> HealthReport:
        return summarize(self.get_all_service_status())

    async def perform_health_checks(self) -> None:
        """Run every registered probe once and record the outcome."""
        for name, probe in list(self._probes.items()):
            started = time.perf_counter()
            try:
                await probe()
            except Exception as e:
                self.mark_service_down(name, f"{type(e).__name__}: {e}")
                continue
            self.mark_service_up(name, time.perf_counter() - started)

    def start(self) -> None:
        """Start periodic polling. Must be called with a running event loop."""
        if self.is_running():
            logger.warning("Health monitor is already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.perform_health_checks,
            trigger="interval",
            seconds=self.check_interval_seconds,
            id=self.JOB_ID,
            name="Service Health Check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            f"Health monitor started: checking every {self.check_interval_seconds}s"
        )

    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def destroy(self) -> None:
        """Stop polling. Safe to call more than once."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Health monitor stopped")
