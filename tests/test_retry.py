"""
Tests for the bounded retry policy.
"""

import threading

import pytest

from src.infra.retry import RetryPolicy, run_with_deadline
from src.scheduler.errors import TransientDependencyError


class TestRetryPolicy:
    """Only TransientDependencyError is retried."""

    def test_success_first_try(self):
        sleeps = []

        result = RetryPolicy().call(lambda: 42, operation="op", sleep=sleeps.append)

        assert result == 42
        assert sleeps == []

    def test_backoff_delays(self):
        assert RetryPolicy(base_delay=0.1).backoff_delay(1) == 0.1
        assert RetryPolicy(base_delay=0.1).backoff_delay(2) == 0.2
        assert RetryPolicy(base_delay=0.1).backoff_delay(3) == 0.4

    def test_retries_then_succeeds(self):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise TransientDependencyError("op")
            return "ok"

        sleeps = []
        result = RetryPolicy(max_attempts=3, base_delay=0.1).call(flaky, "op", sleep=sleeps.append)

        assert result == "ok"
        assert sleeps == [0.1, 0.2]

    def test_exhaustion_reports_attempts(self, caplog):
        cause = OSError("database is locked")

        def always_fails():
            raise TransientDependencyError("store.insert", cause)

        with pytest.raises(TransientDependencyError) as exc_info:
            RetryPolicy(max_attempts=3, base_delay=0.1).call(
                always_fails, "store.insert", sleep=lambda _: None
            )

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "store.insert"
        assert exc_info.value.cause is cause
        assert "[Retry] store.insert attempt 1/3 failed" in caplog.text

    def test_other_errors_are_not_retried(self):
        calls = {"n": 0}

        def broken():
            calls["n"] += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=3).call(broken, "op", sleep=lambda _: None)

        assert calls["n"] == 1

    def test_single_attempt(self):
        def fails():
            raise TransientDependencyError("op")

        with pytest.raises(TransientDependencyError) as exc_info:
            RetryPolicy(max_attempts=1).call(fails, "op", sleep=lambda _: None)

        assert exc_info.value.attempts == 1


class TestRunWithDeadline:
    def test_returns_result(self):
        assert run_with_deadline(lambda: "done", 1.0, "op") == "done"

    def test_timeout_is_transient(self):
        release = threading.Event()

        try:
            with pytest.raises(TransientDependencyError) as exc_info:
                run_with_deadline(lambda: release.wait(5), 0.05, "lookup")
        finally:
            release.set()

        assert exc_info.value.operation == "lookup"
        assert isinstance(exc_info.value.cause, TimeoutError)

    def test_errors_propagate(self):
        def boom():
            raise KeyError("x")

        with pytest.raises(KeyError):
            run_with_deadline(boom, 1.0, "op")
