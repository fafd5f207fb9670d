"""
Service layer error taxonomy.

Every failure that crosses the service boundary is a DomainError. Kinds are
table-driven: each ErrorKind has a default status code, user message,
recovery actions and retryable flag in KIND_DEFAULTS.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from fastapi import HTTPException


class ErrorKind(str, Enum):
    """Domain error kinds."""

    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    STORAGE_ERROR = "STORAGE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class KindDefaults:
    """Default presentation and retry behaviour for one error kind."""

    status_code: int
    user_message: str
    recovery_actions: tuple[str, ...]
    retryable: bool


_GENERIC_RECOVERY = (
    "Try the action again",
    "Refresh the page",
    "Contact support if the issue persists",
)

KIND_DEFAULTS: dict[ErrorKind, KindDefaults] = {
    ErrorKind.SERVICE_UNAVAILABLE: KindDefaults(
        status_code=503,
        user_message=(
            "Services are temporarily unavailable. Please try again in a moment."
        ),
        recovery_actions=(
            "Wait a few moments and try again",
            "Check if the issue persists",
            "Contact support if the problem continues",
        ),
        retryable=True,
    ),
    ErrorKind.RATE_LIMITED: KindDefaults(
        status_code=429,
        user_message=(
            "You've made too many requests. Please wait a moment before trying again."
        ),
        recovery_actions=(
            "Wait for the rate limit to reset",
            "Reduce the frequency of requests",
            "Consider upgrading your plan for higher limits",
        ),
        retryable=False,
    ),
    ErrorKind.VALIDATION_FAILED: KindDefaults(
        status_code=400,
        user_message=(
            "The information provided is invalid. "
            "Please check your input and try again."
        ),
        recovery_actions=(
            "Check your input for errors",
            "Ensure all required fields are filled",
            "Verify the format matches requirements",
        ),
        retryable=False,
    ),
    ErrorKind.NOT_FOUND: KindDefaults(
        status_code=404,
        user_message="The requested resource could not be found.",
        recovery_actions=(
            "Check that the link or identifier is correct",
            "Refresh the page",
        ),
        retryable=False,
    ),
    ErrorKind.UNAUTHORIZED: KindDefaults(
        status_code=401,
        user_message="You need to be logged in to perform this action.",
        recovery_actions=(
            "Log in to your account",
            "Refresh the page",
            "Clear your browser cache and cookies",
        ),
        retryable=False,
    ),
    ErrorKind.FORBIDDEN: KindDefaults(
        status_code=403,
        user_message="You don't have permission to perform this action.",
        recovery_actions=(
            "Check that you are signed in with the right account",
            "Contact the owner of the resource for access",
        ),
        retryable=False,
    ),
    ErrorKind.STORAGE_ERROR: KindDefaults(
        status_code=500,
        user_message="A database error occurred. Please try again.",
        recovery_actions=_GENERIC_RECOVERY,
        retryable=True,
    ),
    ErrorKind.NETWORK_ERROR: KindDefaults(
        status_code=503,
        user_message=(
            "Network connection failed. Please check your internet connection."
        ),
        recovery_actions=(
            "Check your internet connection",
            "Try refreshing the page",
            "Wait a moment and try again",
        ),
        retryable=True,
    ),
    ErrorKind.UNKNOWN: KindDefaults(
        status_code=500,
        user_message="An unexpected error occurred. Please try again.",
        recovery_actions=_GENERIC_RECOVERY,
        retryable=False,
    ),
}


@dataclass(frozen=True)
class ErrorContext:
    """Where and for whom an error happened. Built once at the call site."""

    operation: str
    user_id: str | None = None
    session_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        # Freeze a private copy so later caller mutations don't leak in
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }


def create_error_context(
    operation: str,
    user_id: str | None = None,
    session_id: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> ErrorContext:
    """Build an ErrorContext stamped with the current time."""
    return ErrorContext(
        operation=operation,
        user_id=user_id,
        session_id=session_id,
        metadata=metadata or {},
    )


class DomainError(Exception):
    """
    The single error type raised across the service boundary.

    `message` is internal (logs only). `user_message` and `recovery_actions`
    are safe for direct display.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        context: ErrorContext,
        *,
        status_code: int,
        user_message: str,
        recovery_actions: tuple[str, ...],
        retryable: bool,
        cause: BaseException | None = None,
    ):
        self._kind = kind
        self._message = message
        self._context = context
        self._status_code = status_code
        self._user_message = user_message
        self._recovery_actions = tuple(recovery_actions)
        self._retryable = retryable
        self._cause = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def context(self) -> ErrorContext:
        return self._context

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def user_message(self) -> str:
        return self._user_message

    @property
    def recovery_actions(self) -> tuple[str, ...]:
        return self._recovery_actions

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    def to_dict(self) -> dict[str, Any]:
        """User-facing payload. Never includes the internal message or cause."""
        return {
            "error": self._kind.value,
            "status_code": self._status_code,
            "message": self._user_message,
            "recovery_actions": list(self._recovery_actions),
            "retryable": self._retryable,
            "operation": self._context.operation,
        }

    def to_http_exception(self) -> HTTPException:
        """Convert to a FastAPI HTTPException for route handlers."""
        return HTTPException(status_code=self._status_code, detail=self.to_dict())

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self._kind.value}, "
            f"status_code={self._status_code}, message={self._message!r})"
        )


class CircuitOpenError(DomainError):
    """Circuit breaker is open, request blocked."""

    def __init__(
        self,
        breaker_name: str,
        retry_after: float,
        context: ErrorContext | None = None,
    ):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        defaults = KIND_DEFAULTS[ErrorKind.SERVICE_UNAVAILABLE]
        super().__init__(
            ErrorKind.SERVICE_UNAVAILABLE,
            f"Circuit breaker open for '{breaker_name}', "
            f"retry after {retry_after:.1f}s",
            context or create_error_context(f"circuit_breaker.{breaker_name}"),
            status_code=defaults.status_code,
            user_message=defaults.user_message,
            recovery_actions=defaults.recovery_actions,
            retryable=False,
        )


class ErrorFactory:
    """
    Single construction point for domain errors.

    Usage:
        ctx = create_error_context("deck.generate", user_id="u1")
        raise ErrorFactory.create_for_kind(ErrorKind.NOT_FOUND, ctx)
    """

    @staticmethod
    def create_for_kind(
        kind: ErrorKind,
        context: ErrorContext,
        *,
        message: str | None = None,
        user_message: str | None = None,
        recovery_actions: tuple[str, ...] | list[str] | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> DomainError:
        """Assemble a DomainError from the kind's defaults plus overrides."""
        defaults = KIND_DEFAULTS.get(kind, KIND_DEFAULTS[ErrorKind.UNKNOWN])
        if message is None:
            message = str(cause) if cause is not None else kind.value
        return DomainError(
            kind,
            message,
            context,
            status_code=status_code if status_code is not None else defaults.status_code,
            user_message=user_message or defaults.user_message,
            recovery_actions=(
                tuple(recovery_actions)
                if recovery_actions is not None
                else defaults.recovery_actions
            ),
            retryable=retryable if retryable is not None else defaults.retryable,
            cause=cause,
        )

    @classmethod
    def service_unavailable(
        cls, context: ErrorContext, cause: BaseException | None = None
    ) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.SERVICE_UNAVAILABLE,
            context,
            message="Upstream service is currently unavailable",
            cause=cause,
        )

    @classmethod
    def rate_limited(
        cls,
        context: ErrorContext,
        reset_time: datetime | None = None,
        cause: BaseException | None = None,
    ) -> DomainError:
        if reset_time:
            suffix = f" You can try again after {reset_time.strftime('%H:%M:%S')}."
        else:
            suffix = " Please wait a moment before trying again."
        return cls.create_for_kind(
            ErrorKind.RATE_LIMITED,
            context,
            message="Rate limit exceeded",
            user_message=f"You've made too many requests.{suffix}",
            cause=cause,
        )

    @classmethod
    def validation_failed(
        cls,
        context: ErrorContext,
        details: str,
        cause: BaseException | None = None,
    ) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.VALIDATION_FAILED,
            context,
            message=f"Validation failed: {details}",
            cause=cause,
        )

    @classmethod
    def storage_error(
        cls, context: ErrorContext, cause: BaseException | None = None
    ) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.STORAGE_ERROR,
            context,
            message="Database operation failed",
            cause=cause,
        )

    @classmethod
    def not_found(cls, context: ErrorContext, resource: str) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.NOT_FOUND,
            context,
            message=f"{resource} not found",
            user_message=f"The requested {resource.lower()} could not be found.",
        )

    @classmethod
    def unauthorized(cls, context: ErrorContext) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.UNAUTHORIZED, context, message="Unauthorized access"
        )

    @classmethod
    def forbidden(cls, context: ErrorContext) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.FORBIDDEN, context, message="Forbidden access"
        )

    @classmethod
    def network_error(
        cls, context: ErrorContext, cause: BaseException | None = None
    ) -> DomainError:
        return cls.create_for_kind(
            ErrorKind.NETWORK_ERROR,
            context,
            message="Network request failed",
            cause=cause,
        )

    @classmethod
    def wrap(cls, error: BaseException, context: ErrorContext) -> DomainError:
        """Pass DomainErrors through; wrap anything else as UNKNOWN."""
        if isinstance(error, DomainError):
            return error
        return cls.create_for_kind(
            ErrorKind.UNKNOWN,
            context,
            message=f"{type(error).__name__}: {error}",
            cause=error,
        )
