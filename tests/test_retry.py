"""Tests for error classification and the retry policy."""

import pytest

from b2transfer.exceptions import (
    ApiError,
    LocalFileError,
    NetworkError,
    RetryExhaustedError,
)
from b2transfer.retry import ErrorClass, RetryPolicy, classify, retry_call


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize("code", ["expired_auth_token", "bad_auth_token"])
    def test_expired_token_needs_reauthorization(self, code: str) -> None:
        """A 401 about the token itself means the session expired."""
        error = ApiError("token rejected", status=401, code=code)
        assert classify(error) is ErrorClass.SESSION_EXPIRED

    def test_unauthorized_is_fatal(self) -> None:
        """A 401 about key capabilities cannot be fixed by reauthorizing."""
        error = ApiError("not allowed", status=401, code="unauthorized")
        assert classify(error) is ErrorClass.FATAL

    @pytest.mark.parametrize("status", [408, 429, 500, 503, 504])
    def test_transient_statuses_are_retriable(self, status: int) -> None:
        """Timeouts, throttling and server errors are retried."""
        assert classify(ApiError("try later", status=status)) is ErrorClass.RETRIABLE

    def test_retriable_code_without_status(self) -> None:
        assert classify(ApiError("busy", code="service_unavailable")) is ErrorClass.RETRIABLE

    def test_network_error_is_retriable(self) -> None:
        assert classify(NetworkError("connection reset")) is ErrorClass.RETRIABLE

    @pytest.mark.parametrize("status,code", [(400, "bad_request"), (404, "not_found"), (403, "access_denied")])
    def test_client_errors_are_fatal(self, status: int, code: str) -> None:
        assert classify(ApiError("nope", status=status, code=code)) is ErrorClass.FATAL

    def test_local_errors_are_fatal(self) -> None:
        """Local I/O problems are never retried."""
        assert classify(LocalFileError("disk full")) is ErrorClass.FATAL
        assert classify(OSError("disk full")) is ErrorClass.FATAL


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delay_grows_exponentially(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=100.0, jitter=False)
        assert [policy.delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)
        assert policy.delay(10) == 5.0

    def test_jitter_stays_within_bounds(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=True)
        for attempt in range(1, 8):
            assert 0 <= policy.delay(attempt) <= min(2 ** (attempt - 1), 5.0)

    def test_backoff_uses_injected_sleep(self) -> None:
        slept = []
        policy = RetryPolicy(base_delay=0.5, jitter=False, sleep=slept.append)
        policy.backoff(2)
        assert slept == [1.0]


class TestRetryCall:
    """Tests for retry_call()."""

    def test_returns_after_transient_failures(self, policy: RetryPolicy) -> None:
        errors = [NetworkError("reset"), ApiError("busy", status=503)]

        def flaky():
            if errors:
                raise errors.pop(0)
            return "ok"

        assert retry_call(flaky, policy) == "ok"

    def test_fatal_error_propagates_immediately(self, policy: RetryPolicy) -> None:
        calls = []

        def broken():
            calls.append(1)
            raise ApiError("bad", status=400, code="bad_request")

        with pytest.raises(ApiError):
            retry_call(broken, policy)
        assert len(calls) == 1

    def test_session_expired_is_left_to_caller(self, policy: RetryPolicy) -> None:
        def expired():
            raise ApiError("expired", status=401, code="expired_auth_token")

        with pytest.raises(ApiError) as exc_info:
            retry_call(expired, policy)
        assert exc_info.value.code == "expired_auth_token"

    def test_gives_up_after_max_attempts(self, policy: RetryPolicy) -> None:
        calls = []

        def always_busy():
            calls.append(1)
            raise ApiError("busy", status=503)

        with pytest.raises(RetryExhaustedError) as exc_info:
            retry_call(always_busy, policy, "b2_list_buckets")

        assert len(calls) == policy.max_attempts
        assert exc_info.value.attempts == policy.max_attempts
        assert isinstance(exc_info.value.last_error, ApiError)
