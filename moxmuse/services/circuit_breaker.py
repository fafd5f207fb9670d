"""
CircuitBreaker - Fails fast when a dependency is unhealthy.

States:
- CLOSED: Normal operation, requests pass through, failures are counted
- OPEN: Dependency is failing, requests are rejected without running
- HALF_OPEN: One trial request is allowed through

Transitions:
- CLOSED → OPEN: When failure_threshold is reached
- OPEN → HALF_OPEN: On the next call once reset_timeout has elapsed
- HALF_OPEN → CLOSED: Trial request succeeded
- HALF_OPEN → OPEN: Trial request failed
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from moxmuse.services.errors import CircuitOpenError, DomainError, ErrorContext

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(minutes=1)  # Time before half-open
    monitoring_period: timedelta = timedelta(minutes=5)  # Failure memory window


class CircuitBreaker:
    """
    Circuit breaker for a single logical dependency.

    Usage:
        cb = CircuitBreaker("scryfall")
        card = await cb.execute(lambda: scryfall.get_card(card_id))
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> datetime | None:
        return self._last_failure_time

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext | None = None,
    ) -> T:
        """
        Run `operation` under breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open (operation not invoked)
            Exception: Whatever the operation raised
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker '{self.name}' transitioned to HALF_OPEN")
            else:
                raise CircuitOpenError(
                    self.name, self.get_time_until_reset() or 0, context
                )

        is_trial = self._state == CircuitState.HALF_OPEN
        if is_trial:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, 0, context)
            self._trial_in_flight = True

        try:
            result = await operation()
        except Exception as e:
            # Caller-side faults say nothing about the dependency
            if self._counts_as_failure(e):
                self.on_failure()
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False

        self.on_success(trial=is_trial)
        return result

    def on_success(self, trial: bool = False) -> None:
        """
        Record a successful request.

        Only the HALF_OPEN trial may close the circuit. A call admitted while
        CLOSED that finishes after the circuit opened leaves it OPEN.
        """
        if trial and self._state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' CLOSED (recovered)")
            self._failure_count = 0
            self._state = CircuitState.CLOSED
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def on_failure(self) -> None:
        """Record a failed request."""
        now = datetime.now()
        if (
            self._state == CircuitState.CLOSED
            and self._last_failure_time
            and now - self._last_failure_time > self.config.monitoring_period
        ):
            self._failure_count = 0

        self._failure_count += 1
        self._last_failure_time = now

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        logger.warning(
            f"Circuit breaker '{self.name}' OPENED after {self._failure_count} failures"
        )

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return False
        return datetime.now() - self._last_failure_time >= self.config.reset_timeout

    @staticmethod
    def _counts_as_failure(error: BaseException) -> bool:
        return not (isinstance(error, DomainError) and not error.retryable)

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._trial_in_flight = False
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the circuit may transition to half-open."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return None

        reset_at = self._last_failure_time + self.config.reset_timeout
        remaining = (reset_at - datetime.now()).total_seconds()
        return max(0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.config.failure_threshold,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Lazily creates and memoizes one breaker per dependency name.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("openai")
    """

    def __init__(self, default_config: CircuitBreakerConfig | None = None):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()

    def get(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a dependency."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                config or self._default_config,
            )
        return self._breakers[name]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {name: cb.get_status() for name, cb in self._breakers.items()}

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, name: str) -> bool:
        """Reset a specific circuit breaker."""
        if name in self._breakers:
            self._breakers[name].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get names of dependencies with open circuits."""
        return [
            name
            for name, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
