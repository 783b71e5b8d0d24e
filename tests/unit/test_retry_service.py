"""
Unit tests for the conflict retry helper.
"""

import pytest
from gestion.exceptions import ConcurrencyError, StateError
from gestion.services.retry_service import retry_on_conflict


class Flaky:
    """Callable that fails with ConcurrencyError a number of times."""

    __name__ = 'flaky_operation'

    def __init__(self, failures, error=ConcurrencyError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error('conflicto')
        return value * 2


class TestRetryOnConflict:
    """Tests for bounded exponential backoff."""

    def test_succeeds_after_conflicts(self):
        sleeps = []
        operation = Flaky(failures=2)

        result = retry_on_conflict(operation, 21, max_attempts=3, base_delay=1.0, max_delay=5.0,
                                   sleep=sleeps.append)

        assert result == 42
        assert operation.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_is_capped(self):
        sleeps = []
        operation = Flaky(failures=4)

        retry_on_conflict(operation, 1, max_attempts=5, base_delay=1.0, max_delay=3.0, sleep=sleeps.append)

        assert sleeps == [1.0, 2.0, 3.0, 3.0]

    def test_gives_up_after_max_attempts(self):
        operation = Flaky(failures=10)

        with pytest.raises(ConcurrencyError):
            retry_on_conflict(operation, 1, max_attempts=3, base_delay=0, max_delay=0, sleep=lambda s: None)

        assert operation.calls == 3

    def test_other_errors_not_retried(self):
        operation = Flaky(failures=1, error=StateError)

        with pytest.raises(StateError):
            retry_on_conflict(operation, 1, max_attempts=3, base_delay=0, max_delay=0, sleep=lambda s: None)

        assert operation.calls == 1
