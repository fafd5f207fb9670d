"""
Service layer resilience core.

Provides:
- DomainError / ErrorFactory: Uniform error taxonomy
- RetryManager: Bounded exponential-backoff retries
- CircuitBreaker: Fails fast on unhealthy dependencies
- ErrorHandler: Error conversion plus retry and breaker composition
- ServiceHealthMonitor: Per-service availability tracking
- FallbackCache: TTL + LRU store of last good results
- GracefulDegradationService: Cache → primary → fallback orchestration
"""

from moxmuse.services.errors import (
    KIND_DEFAULTS,
    CircuitOpenError,
    DomainError,
    ErrorContext,
    ErrorFactory,
    ErrorKind,
    create_error_context,
)
from moxmuse.services.retry import RetryManager, RetryPolicy
from moxmuse.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from moxmuse.services.error_handler import ErrorHandler, with_error_handling
from moxmuse.services.health import (
    HealthReport,
    ServiceHealthMonitor,
    ServiceStatus,
)
from moxmuse.services.cache import CacheRecord, FallbackCache
from moxmuse.services.degradation import (
    DegradedResult,
    FallbackConfig,
    GracefulDegradationService,
)

__all__ = [
    # Errors
    "KIND_DEFAULTS",
    "CircuitOpenError",
    "DomainError",
    "ErrorContext",
    "ErrorFactory",
    "ErrorKind",
    "create_error_context",
    # Retry
    "RetryManager",
    "RetryPolicy",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Error Handler
    "ErrorHandler",
    "with_error_handling",
    # Health
    "HealthReport",
    "ServiceHealthMonitor",
    "ServiceStatus",
    # Cache
    "CacheRecord",
    "FallbackCache",
    # Degradation
    "DegradedResult",
    "FallbackConfig",
    "GracefulDegradationService",
]
