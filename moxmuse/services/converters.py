"""
Edge converters from library errors to DomainError.

Each upstream source has an ordered chain of typed rules. The first rule whose
predicate matches builds the DomainError. Rules are pure and never raise.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable

import httpx
from pydantic import ValidationError
from sqlalchemy import exc as sa_exc

from moxmuse.services.errors import (
    DomainError,
    ErrorContext,
    ErrorFactory,
    ErrorKind,
)

# SQLSTATE class 23 codes
_FOREIGN_KEY_VIOLATION = "23503"


@dataclass(frozen=True)
class ErrorRule:
    """One predicate→DomainError mapping."""

    name: str
    matches: Callable[[BaseException], bool]
    build: Callable[[BaseException, ErrorContext], DomainError]


def is_instance(*types: type[BaseException]) -> Callable[[BaseException], bool]:
    return lambda error: isinstance(error, types)


def has_status(*codes: int) -> Callable[[BaseException], bool]:
    def predicate(error: BaseException) -> bool:
        return isinstance(error, httpx.HTTPStatusError) and (
            error.response.status_code in codes
        )

    return predicate


def has_server_status(error: BaseException) -> bool:
    return (
        isinstance(error, httpx.HTTPStatusError)
        and error.response.status_code >= 500
    )


def convert_with(
    rules: Iterable[ErrorRule],
    error: BaseException,
    context: ErrorContext,
) -> DomainError | None:
    """Apply the first matching rule, or return None."""
    for rule in rules:
        if rule.matches(error):
            return rule.build(error, context)
    return None


# ── Storage (SQLAlchemy) ──────────────────────────────────────────────────────


def _sqlstate(error: BaseException) -> str | None:
    orig = getattr(error, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _integrity_error(error: BaseException, context: ErrorContext) -> DomainError:
    if _sqlstate(error) == _FOREIGN_KEY_VIOLATION:
        details = "Referenced record does not exist"
    else:
        details = "A record with this information already exists"
    return ErrorFactory.validation_failed(context, details, cause=error)


def _not_found(error: BaseException, context: ErrorContext) -> DomainError:
    return ErrorFactory.create_for_kind(
        ErrorKind.NOT_FOUND,
        context,
        message=f"record not found: {error}",
        user_message="The requested record could not be found.",
        cause=error,
    )


def _storage_bug(error: BaseException, context: ErrorContext) -> DomainError:
    # Malformed statements fail the same way on every attempt
    return ErrorFactory.create_for_kind(
        ErrorKind.STORAGE_ERROR,
        context,
        message=f"Database statement rejected: {error}",
        retryable=False,
        cause=error,
    )


STORAGE_RULES: tuple[ErrorRule, ...] = (
    ErrorRule("integrity", is_instance(sa_exc.IntegrityError), _integrity_error),
    ErrorRule("no_result", is_instance(sa_exc.NoResultFound), _not_found),
    ErrorRule(
        "bad_statement",
        is_instance(sa_exc.ProgrammingError, sa_exc.InvalidRequestError),
        _storage_bug,
    ),
    ErrorRule(
        "storage",
        is_instance(sa_exc.SQLAlchemyError),
        lambda e, ctx: ErrorFactory.storage_error(ctx, cause=e),
    ),
)


# ── Input validation (pydantic) ───────────────────────────────────────────────


def format_validation_details(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        msg = item.get("msg", "invalid")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return ", ".join(parts)


VALIDATION_RULES: tuple[ErrorRule, ...] = (
    ErrorRule(
        "pydantic",
        is_instance(ValidationError),
        lambda e, ctx: ErrorFactory.validation_failed(
            ctx, format_validation_details(e), cause=e
        ),
    ),
)


# ── AI provider (httpx) ───────────────────────────────────────────────────────


def _retry_after(error: BaseException) -> datetime | None:
    if not isinstance(error, httpx.HTTPStatusError):
        return None
    value = error.response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return datetime.now() + timedelta(seconds=float(value))
    except (ValueError, OverflowError):
        # Unparseable or out of datetime range
        return None


def _rate_limited(error: BaseException, context: ErrorContext) -> DomainError:
    return ErrorFactory.rate_limited(
        context, reset_time=_retry_after(error), cause=error
    )


def ai_unavailable(reason: str) -> Callable[[BaseException, ErrorContext], DomainError]:
    def build(error: BaseException, context: ErrorContext) -> DomainError:
        return ErrorFactory.create_for_kind(
            ErrorKind.SERVICE_UNAVAILABLE,
            context,
            message=f"AI provider {reason}: {error}",
            user_message=(
                "AI services are temporarily unavailable. "
                "Please try again in a moment."
            ),
            cause=error,
        )

    return build


AI_PROVIDER_RULES: tuple[ErrorRule, ...] = (
    ErrorRule("rate_limited", has_status(429), _rate_limited),
    ErrorRule(
        "timeout",
        is_instance(httpx.TimeoutException, TimeoutError),
        ai_unavailable("request timed out"),
    ),
    ErrorRule(
        "transport",
        is_instance(httpx.TransportError, ConnectionError),
        ai_unavailable("unreachable"),
    ),
    ErrorRule("server_error", has_server_status, ai_unavailable("returned an error")),
)


# ── Generic HTTP and builtin errors ───────────────────────────────────────────


HTTP_RULES: tuple[ErrorRule, ...] = (
    ErrorRule("rate_limited", has_status(429), _rate_limited),
    ErrorRule(
        "unauthorized",
        has_status(401),
        lambda e, ctx: ErrorFactory.create_for_kind(
            ErrorKind.UNAUTHORIZED, ctx, message=f"Unauthorized: {e}", cause=e
        ),
    ),
    ErrorRule(
        "forbidden",
        has_status(403),
        lambda e, ctx: ErrorFactory.create_for_kind(
            ErrorKind.FORBIDDEN, ctx, message=f"Forbidden: {e}", cause=e
        ),
    ),
    ErrorRule(
        "not_found",
        has_status(404),
        lambda e, ctx: ErrorFactory.create_for_kind(
            ErrorKind.NOT_FOUND, ctx, message=f"Not found: {e}", cause=e
        ),
    ),
    ErrorRule(
        "server_error",
        has_server_status,
        lambda e, ctx: ErrorFactory.service_unavailable(ctx, cause=e),
    ),
    ErrorRule(
        "transport",
        is_instance(httpx.TransportError),
        lambda e, ctx: ErrorFactory.network_error(ctx, cause=e),
    ),
)

BUILTIN_RULES: tuple[ErrorRule, ...] = (
    ErrorRule(
        "network",
        is_instance(TimeoutError, ConnectionError),
        lambda e, ctx: ErrorFactory.network_error(ctx, cause=e),
    ),
)

GENERIC_RULES: tuple[ErrorRule, ...] = (
    STORAGE_RULES + VALIDATION_RULES + HTTP_RULES + BUILTIN_RULES
)
