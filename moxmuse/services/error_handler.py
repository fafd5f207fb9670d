"""
ErrorHandler - Composition root for error conversion, retry and circuit breaking.

Raw library errors are converted to DomainError exactly once, at the edge.
Retry wraps the circuit breaker, which wraps the guarded operation, so every
attempt is seen by the breaker.
"""

from typing import Any, Awaitable, Callable, Sequence, TypeVar

from loguru import logger

from moxmuse.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from moxmuse.services.converters import (
    AI_PROVIDER_RULES,
    GENERIC_RULES,
    STORAGE_RULES,
    VALIDATION_RULES,
    ErrorRule,
    ai_unavailable,
    convert_with,
)
from moxmuse.services.errors import (
    DomainError,
    ErrorContext,
    ErrorFactory,
)
from moxmuse.services.retry import RetryManager, RetryPolicy

T = TypeVar("T")


class ErrorHandler:
    """
    Converts raw errors and runs operations with retry and circuit breaking.

    Usage:
        handler = ErrorHandler()
        deck = await handler.execute_with_retry_and_circuit_breaker(
            lambda: llm.generate(prompt),
            create_error_context("deck.generate", user_id=user.id),
            breaker_name="openai",
        )
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        rules: Sequence[ErrorRule] = GENERIC_RULES,
    ):
        self._rules = tuple(rules)
        self._retry_manager = RetryManager(retry_policy, wrap_error=self.handle_error)
        self._circuit_breakers = CircuitBreakerRegistry(breaker_config)

    @property
    def retry_manager(self) -> RetryManager:
        return self._retry_manager

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self._circuit_breakers

    # ── Converters ────────────────────────────────────────────────────────────

    def handle_storage_error(
        self, error: BaseException, context: ErrorContext
    ) -> DomainError:
        """Convert a storage-driver error. Unmatched errors become STORAGE_ERROR."""
        if isinstance(error, DomainError):
            return error
        return convert_with(
            STORAGE_RULES, error, context
        ) or ErrorFactory.storage_error(context, cause=error)

    def handle_validation_error(
        self, error: BaseException, context: ErrorContext
    ) -> DomainError:
        """Convert an input-validation error. Unmatched errors become VALIDATION_FAILED."""
        if isinstance(error, DomainError):
            return error
        return convert_with(
            VALIDATION_RULES, error, context
        ) or ErrorFactory.validation_failed(context, str(error), cause=error)

    def handle_ai_provider_error(
        self, error: BaseException, context: ErrorContext
    ) -> DomainError:
        """Convert an upstream AI provider error into RATE_LIMITED or SERVICE_UNAVAILABLE."""
        if isinstance(error, DomainError):
            return error
        return convert_with(AI_PROVIDER_RULES, error, context) or ai_unavailable(
            "request failed"
        )(error, context)

    def convert(
        self, error: BaseException, context: ErrorContext
    ) -> DomainError | None:
        """Typed conversion only. Returns None when no rule matches."""
        if isinstance(error, DomainError):
            return error
        return convert_with(self._rules, error, context)

    def handle_error(self, error: BaseException, context: ErrorContext) -> DomainError:
        """Convert any error; unmatched errors become UNKNOWN."""
        return self.convert(error, context) or ErrorFactory.wrap(error, context)

    # ── Execution ─────────────────────────────────────────────────────────────

    def get_circuit_breaker(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        return self._circuit_breakers.get(name, config)

    def _guard(
        self, operation: Callable[[], Awaitable[T]], context: ErrorContext
    ) -> Callable[[], Awaitable[T]]:
        async def guarded() -> T:
            try:
                return await operation()
            except DomainError:
                raise
            except Exception as e:
                converted = self.convert(e, context)
                if converted is None:
                    # Left raw so retry can classify it by name/message
                    raise
                raise converted from e

        return guarded

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        policy: RetryPolicy | None = None,
        **overrides: Any,
    ) -> T:
        return await self._retry_manager.execute_with_retry(
            self._guard(operation, context), context, policy, **overrides
        )

    async def execute_with_retry_and_circuit_breaker(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        breaker_name: str | None = None,
        policy: RetryPolicy | None = None,
        **overrides: Any,
    ) -> T:
        """
        Run `operation` through the named breaker (if any) inside the retry loop.

        Raises:
            DomainError: On any terminal failure
        """
        guarded = self._guard(operation, context)
        if breaker_name:
            breaker = self.get_circuit_breaker(breaker_name)

            async def wrapped() -> T:
                return await breaker.execute(guarded, context)

        else:
            wrapped = guarded

        return await self._retry_manager.execute_with_retry(
            wrapped, context, policy, **overrides
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "retry": self._retry_manager.get_stats().to_dict(),
            "circuit_breakers": self._circuit_breakers.get_all_status(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
        }


async def with_error_handling(
    handler: ErrorHandler,
    operation: Callable[[], Awaitable[T]],
    context: ErrorContext,
    breaker_name: str | None = None,
    policy: RetryPolicy | None = None,
) -> T:
    """Run through `handler` and log the terminal failure before re-raising it."""
    try:
        return await handler.execute_with_retry_and_circuit_breaker(
            operation, context, breaker_name, policy
        )
    except DomainError as e:
        logger.error(
            f"Operation {context.operation} failed [{e.kind.value}/{e.status_code}]: "
            f"{e.message}"
        )
        raise
