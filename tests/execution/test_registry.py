"""Tests for the handler registry and the built-in handlers."""

import pytest

from cronspine.core.errors import HandlerNotFoundError
from cronspine.execution.handlers import Counter, register_builtins
from cronspine.execution.registry import (
    HandlerRegistry,
    get_default_registry,
    register_factory,
    register_task,
    reset_default_registry,
)


class TestHandlerRegistry:
    def test_register_and_get(self):
        registry = HandlerRegistry()
        registry.register("cleanup", lambda days=30: days == 7)
        assert registry.get("cleanup")(days=7) is True
        assert registry.has("cleanup")
        assert not registry.has_factory("cleanup")

    def test_tasks_and_factories_are_separate(self):
        registry = HandlerRegistry()
        registry.register("mailer", lambda: True)
        with pytest.raises(HandlerNotFoundError):
            registry.get_factory("mailer")

    def test_missing_handler_lists_available(self):
        registry = HandlerRegistry()
        registry.register("a", lambda: True)
        with pytest.raises(HandlerNotFoundError, match="Available: a"):
            registry.get("b")

    def test_not_callable(self):
        with pytest.raises(TypeError):
            HandlerRegistry().register("x", 42)

    def test_list_and_unregister(self):
        registry = HandlerRegistry()
        registry.register("b", lambda: True, description="second")
        registry.register_factory("a", object)
        assert registry.list_handlers() == [("factory", "a"), ("task", "b")]
        assert registry.get_metadata("b")["description"] == "second"
        assert registry.unregister("b") is True
        assert registry.unregister("b") is False
        registry.clear()
        assert registry.list_handlers() == []


class TestDecorators:
    def test_register_task_into_given_registry(self):
        registry = HandlerRegistry()

        @register_task("purge", registry=registry)
        def purge(older_than=86400):
            """Purge old rows."""
            return True

        assert registry.get("purge") is purge
        assert registry.get_metadata("purge")["description"] == "Purge old rows."

    def test_register_factory_into_default_registry(self):
        @register_factory("mailer")
        class Mailer:
            def flush(self):
                return True

        assert get_default_registry().get_factory("mailer") is Mailer

    def test_reset_default_registry(self):
        first = get_default_registry()
        reset_default_registry()
        assert get_default_registry() is not first


class TestBuiltins:
    def test_register_builtins(self):
        registry = register_builtins(HandlerRegistry())
        assert registry.list_handlers("task") == [
            ("task", "echo"),
            ("task", "fail"),
            ("task", "noop"),
            ("task", "sleep"),
        ]
        assert registry.get_factory("counter") is Counter

    def test_builtin_behaviour(self):
        registry = register_builtins(HandlerRegistry())
        assert registry.get("noop")(1, a=2) is True
        assert registry.get("echo")(a=1) == {"a": 1}
        assert registry.get("echo")(5) == 5
        assert registry.get("echo")(1, 2) == [1, 2]
        with pytest.raises(RuntimeError, match="nope"):
            registry.get("fail")("nope")

    def test_counter_chain(self):
        assert Counter(2).increment().increment(3).value() == 6
        assert Counter(5).at_least(5) is True
