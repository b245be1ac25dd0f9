"""
tests/unit/test_retry.py - Fetch retry policy tests
"""

from types import SimpleNamespace

import pytest

from reportsync.bootstrap.config import FetchConfig
from reportsync.errors import PermanentFetchError, TransientFetchError, ViewValidationError
from reportsync.fetch.retry import RetryPolicy, is_transient, status_of


class HttpError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.response = SimpleNamespace(status_code=status_code)


class TestClassification:
    """Test which failures are retried."""

    @pytest.mark.parametrize("error,expected", [
        (TransientFetchError("503"), True),
        (PermanentFetchError("404", status=404), False),
        (ViewValidationError("bad payload"), False),
        (HttpError(404), False),
        (HttpError(429), False),
        (HttpError(502), True),
        (ConnectionError("reset"), True),
        (TimeoutError(), True),
    ])
    def test_is_transient(self, error, expected):
        assert is_transient(error) is expected

    def test_status_of(self):
        assert status_of(HttpError(418)) == 418
        assert status_of(PermanentFetchError(status=400)) == 400
        assert status_of(ValueError()) is None


class TestRetryPolicy:
    """Test backoff and attempt limits."""

    def test_delays_double_and_cap(self):
        policy = RetryPolicy(max_retries=5, base_delay_s=1.0, max_delay_s=10.0)
        assert [policy.delay_for(a) for a in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    def test_attempt_limit(self):
        policy = RetryPolicy(max_retries=2)
        error = TransientFetchError()
        assert policy.should_retry(error, 0)
        assert policy.should_retry(error, 1)
        assert not policy.should_retry(error, 2)

    def test_permanent_never_retried(self):
        assert not RetryPolicy(max_retries=10).should_retry(PermanentFetchError(), 0)

    def test_from_config(self):
        policy = RetryPolicy.from_config(FetchConfig(max_retries=4, retry_base_delay_s=0.5, retry_max_delay_s=3.0))
        assert policy == RetryPolicy(max_retries=4, base_delay_s=0.5, max_delay_s=3.0)
