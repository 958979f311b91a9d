"""Tests for run_with_timeout."""

import time

import pytest

from cronspine.execution.timeout import TimeoutExpired, run_with_timeout


class TestRunWithTimeout:
    def test_returns_value(self):
        assert run_with_timeout(sum, 5.0, args=([1, 2, 3],)) == 6

    def test_kwargs(self):
        assert run_with_timeout(lambda a, b=0: a + b, 5.0, args=(1,), kwargs={"b": 2}) == 3

    def test_propagates_exceptions(self):
        def boom():
            raise KeyError("k")

        with pytest.raises(KeyError):
            run_with_timeout(boom, 5.0)

    def test_timeout(self):
        start = time.monotonic()
        with pytest.raises(TimeoutExpired) as info:
            run_with_timeout(lambda: time.sleep(1), 0.1, operation="task:slow")
        assert time.monotonic() - start < 0.9
        assert info.value.operation == "task:slow"
        assert "timed out after 0.1s" in str(info.value)

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            run_with_timeout(lambda: None, 0)
