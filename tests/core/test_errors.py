"""Tests for cronspine.core.errors."""

import sqlite3

import pytest

from cronspine.core.errors import (
    ConfigError,
    CronError,
    DatastoreError,
    ErrorCategory,
    HandlerNotFoundError,
    InstanceNotFoundError,
    InvalidSettingError,
    ScheduleError,
    TaskNotFoundError,
    ValidationError,
    categorize_error,
    is_retryable,
)


class TestCronError:
    """Base error behaviour."""

    def test_defaults(self):
        """Plain CronError is internal and not retryable."""
        error = CronError("boom")
        assert error.message == "boom"
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False

    def test_cause_is_chained(self):
        """The cause becomes __cause__ and appears in to_dict."""
        cause = sqlite3.OperationalError("database is locked")
        error = DatastoreError("claim failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "database is locked"

    def test_with_context(self):
        """with_context sets known fields and collects the rest as metadata."""
        error = ScheduleError("bad calendar").with_context(task="backup", weekday=9)
        assert error.context.task == "backup"
        assert error.context.metadata == {"weekday": 9}
        assert error.to_dict()["context"]["task"] == "backup"


class TestSubclasses:
    """Categories and retryability of the concrete errors."""

    def test_datastore_error_is_retryable(self):
        assert DatastoreError("down").retryable is True
        assert DatastoreError("down").category is ErrorCategory.DATABASE

    def test_validation_error_field(self):
        error = ValidationError("frequency too low", field="frequency")
        assert error.field == "frequency"
        assert error.to_dict()["field"] == "frequency"
        assert error.category is ErrorCategory.VALIDATION

    def test_not_found_errors(self):
        assert "backup" in TaskNotFoundError("backup").message
        error = InstanceNotFoundError("backup", '{"a":1}', 2)
        assert error.context.instance == 2
        assert error.context.arguments == '{"a":1}'

    def test_invalid_setting(self):
        error = InvalidSettingError("bogus", 5)
        assert isinstance(error, ConfigError)
        assert error.setting == "bogus"
        assert error.context.setting == "bogus"

    def test_handler_not_found_lists_available(self):
        error = HandlerNotFoundError("task:missing", ["noop", "echo"])
        assert "noop, echo" in error.message


class TestHelpers:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (DatastoreError("x"), True),
            (ValidationError("x"), False),
            (ConnectionError(), True),
            (TimeoutError(), True),
            (ValueError(), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_categorize_error(self):
        assert categorize_error(ValidationError("x")) is ErrorCategory.VALIDATION
        assert categorize_error(OSError()) is ErrorCategory.DATABASE
        assert categorize_error(TypeError()) is ErrorCategory.VALIDATION
        assert categorize_error(KeyError()) is ErrorCategory.UNKNOWN
