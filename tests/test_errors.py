"""
Tests for the domain error taxonomy and ErrorFactory.
"""
from datetime import datetime

import pytest
from fastapi import HTTPException

from moxmuse.services.errors import (
    KIND_DEFAULTS,
    CircuitOpenError,
    DomainError,
    ErrorFactory,
    ErrorKind,
    create_error_context,
)


EXPECTED_TABLE = {
    ErrorKind.SERVICE_UNAVAILABLE: (503, True),
    ErrorKind.RATE_LIMITED: (429, False),
    ErrorKind.VALIDATION_FAILED: (400, False),
    ErrorKind.NOT_FOUND: (404, False),
    ErrorKind.UNAUTHORIZED: (401, False),
    ErrorKind.FORBIDDEN: (403, False),
    ErrorKind.STORAGE_ERROR: (500, True),
    ErrorKind.NETWORK_ERROR: (503, True),
    ErrorKind.UNKNOWN: (500, False),
}


@pytest.fixture
def ctx():
    return create_error_context("deck.generate", user_id="user-1", metadata={"a": 1})


class TestKindDefaults:
    """Every kind has documented defaults."""

    def test_table_covers_every_kind(self):
        assert set(KIND_DEFAULTS) == set(ErrorKind)
        assert set(EXPECTED_TABLE) == set(ErrorKind)

    @pytest.mark.parametrize("kind", list(ErrorKind))
    def test_defaults_match_table(self, kind, ctx):
        status, retryable = EXPECTED_TABLE[kind]
        error = ErrorFactory.create_for_kind(kind, ctx)

        assert error.kind is kind
        assert error.status_code == status
        assert error.retryable is retryable
        assert error.user_message == KIND_DEFAULTS[kind].user_message
        assert error.recovery_actions == KIND_DEFAULTS[kind].recovery_actions
        assert len(error.recovery_actions) >= 1


class TestCreateForKind:
    def test_overrides_win(self, ctx):
        cause = ValueError("boom")
        error = ErrorFactory.create_for_kind(
            ErrorKind.UNKNOWN,
            ctx,
            message="internal detail",
            user_message="Custom",
            recovery_actions=["One"],
            retryable=True,
            status_code=418,
            cause=cause,
        )

        assert error.message == "internal detail"
        assert error.user_message == "Custom"
        assert error.recovery_actions == ("One",)
        assert error.retryable is True
        assert error.status_code == 418
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_message_defaults_to_cause_text(self, ctx):
        error = ErrorFactory.create_for_kind(
            ErrorKind.NETWORK_ERROR, ctx, cause=OSError("reset by peer")
        )
        assert error.message == "reset by peer"

    def test_message_defaults_to_kind_without_cause(self, ctx):
        error = ErrorFactory.create_for_kind(ErrorKind.FORBIDDEN, ctx)
        assert error.message == "FORBIDDEN"
        assert str(error) == "FORBIDDEN"

    def test_context_is_carried(self, ctx):
        error = ErrorFactory.create_for_kind(ErrorKind.NOT_FOUND, ctx)
        assert error.context is ctx
        assert error.context.operation == "deck.generate"


class TestImmutability:
    def test_domain_error_fields_are_read_only(self, ctx):
        error = ErrorFactory.create_for_kind(ErrorKind.UNKNOWN, ctx)
        with pytest.raises(AttributeError):
            error.retryable = True

    def test_context_metadata_is_frozen_copy(self):
        metadata = {"deck": "abc"}
        ctx = create_error_context("op", metadata=metadata)
        metadata["deck"] = "changed"

        assert ctx.metadata["deck"] == "abc"
        with pytest.raises(TypeError):
            ctx.metadata["deck"] = "x"

    def test_context_timestamp_is_set(self):
        before = datetime.now()
        ctx = create_error_context("op")
        assert before <= ctx.timestamp <= datetime.now()


class TestConvenienceConstructors:
    def test_rate_limited_mentions_reset_time(self, ctx):
        reset = datetime(2026, 1, 1, 12, 30, 5)
        error = ErrorFactory.rate_limited(ctx, reset_time=reset)
        assert error.kind is ErrorKind.RATE_LIMITED
        assert "12:30:05" in error.user_message
        assert error.retryable is False

    def test_not_found_names_resource(self, ctx):
        error = ErrorFactory.not_found(ctx, "Deck")
        assert error.message == "Deck not found"
        assert error.user_message == "The requested deck could not be found."
        assert error.status_code == 404

    def test_validation_failed_includes_details(self, ctx):
        error = ErrorFactory.validation_failed(ctx, "name: required")
        assert error.message == "Validation failed: name: required"
        assert error.retryable is False

    def test_storage_error_is_retryable(self, ctx):
        assert ErrorFactory.storage_error(ctx).retryable is True

    def test_wrap_passes_domain_errors_through(self, ctx):
        original = ErrorFactory.unauthorized(ctx)
        assert ErrorFactory.wrap(original, ctx) is original

    def test_wrap_turns_raw_errors_into_unknown(self, ctx):
        raw = KeyError("missing")
        error = ErrorFactory.wrap(raw, ctx)
        assert isinstance(error, DomainError)
        assert error.kind is ErrorKind.UNKNOWN
        assert error.status_code == 500
        assert error.cause is raw


class TestPresentation:
    def test_to_dict_hides_internal_message(self, ctx):
        error = ErrorFactory.create_for_kind(
            ErrorKind.STORAGE_ERROR, ctx, message="password=hunter2 in DSN"
        )
        payload = error.to_dict()

        assert "hunter2" not in str(payload)
        assert payload["error"] == "STORAGE_ERROR"
        assert payload["status_code"] == 500
        assert payload["message"] == KIND_DEFAULTS[ErrorKind.STORAGE_ERROR].user_message
        assert payload["operation"] == "deck.generate"

    def test_to_http_exception(self, ctx):
        exc = ErrorFactory.forbidden(ctx).to_http_exception()
        assert isinstance(exc, HTTPException)
        assert exc.status_code == 403
        assert exc.detail["error"] == "FORBIDDEN"


class TestCircuitOpenError:
    def test_is_non_retryable_service_unavailable(self):
        error = CircuitOpenError("openai", 12.5)
        assert isinstance(error, DomainError)
        assert error.kind is ErrorKind.SERVICE_UNAVAILABLE
        assert error.status_code == 503
        assert error.retryable is False
        assert error.breaker_name == "openai"
        assert error.retry_after == 12.5
        assert "openai" in error.message
