import httpx
import pytest

from conftest import http_status_error
from shared.pipeline.errors import (
    MAX_ERROR_MESSAGE_LENGTH,
    ClassifiedError,
    ErrorKind,
    InvariantViolationError,
    MissingCredentialError,
    UnsupportedMimeTypeError,
    classify_exception,
    truncate_message,
)
from shared.pipeline.retry import MAX_RETRIES, backoff_seconds, decide_retry


class TestClassifyException:
    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
    def test_client_errors_are_permanent(self, status):
        assert classify_exception(http_status_error(status)).kind == ErrorKind.PERMANENT

    @pytest.mark.parametrize("status", [408, 425, 429, 500, 502, 503])
    def test_throttling_and_server_errors_are_transient(self, status):
        assert classify_exception(http_status_error(status)).kind == ErrorKind.TRANSIENT

    def test_transport_errors_are_transient(self):
        error = classify_exception(httpx.ConnectError("connection refused"))
        assert error.kind == ErrorKind.TRANSIENT
        assert "connection refused" in error.message

    def test_unknown_exceptions_default_to_transient(self):
        assert classify_exception(RuntimeError("boom")) == ClassifiedError(ErrorKind.TRANSIENT, "boom")

    def test_pipeline_errors_carry_their_own_kind(self):
        assert classify_exception(UnsupportedMimeTypeError("image/png")) == ClassifiedError(
            ErrorKind.PERMANENT, "Unsupported MIME type: image/png"
        )
        assert classify_exception(MissingCredentialError("u")).kind == ErrorKind.PERMANENT
        assert classify_exception(InvariantViolationError("count mismatch")).kind == ErrorKind.INVARIANT_VIOLATION

    def test_empty_message_falls_back_to_class_name(self):
        assert classify_exception(KeyError()).message == "KeyError"

    def test_message_is_capped(self):
        error = classify_exception(RuntimeError("x" * 5000))
        assert len(error.message) == MAX_ERROR_MESSAGE_LENGTH

    def test_truncate_message_leaves_short_text_alone(self):
        assert truncate_message("short") == "short"


class TestRetryDecision:
    def test_backoff_doubles(self):
        assert [backoff_seconds(attempt) for attempt in (1, 2, 3)] == [2, 4, 8]

    def test_transient_errors_retry_within_budget(self):
        error = ClassifiedError(ErrorKind.TRANSIENT, "503")
        first = decide_retry(error, retry_count=0)
        second = decide_retry(error, retry_count=1)
        assert (first.retry, first.attempt, first.delay_seconds) == (True, 1, 2)
        assert (second.retry, second.attempt, second.delay_seconds) == (True, 2, 4)

    def test_exhausted_budget_is_terminal(self):
        assert not decide_retry(ClassifiedError(ErrorKind.TRANSIENT, "503"), retry_count=MAX_RETRIES).retry

    @pytest.mark.parametrize("kind", [ErrorKind.PERMANENT, ErrorKind.INVARIANT_VIOLATION])
    def test_non_transient_errors_never_retry(self, kind):
        assert not decide_retry(ClassifiedError(kind, "nope"), retry_count=0).retry
