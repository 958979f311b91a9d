"""Executor: turn a task definition plus instance arguments into an outcome.

Resolution
──────────
::

    object_ref set?
      yes → factory = registry.get_factory(object_ref)
            obj = factory(*parameters | **parameters)
            for step in parameters["extra_methods"]:
                obj = getattr(obj, step["method"])(*step["arguments"] ...)
            unit = getattr(obj, handler)
      no  → unit = registry.get(handler)

Arguments are the instance's stored JSON text with ``"$cronInstance"``
replaced by the instance number, decoded, then spread: list → ``*args``,
dict → ``**kwargs``, any other value → a single argument, empty → none.

Outcome
───────
A return value in the definition's ``allowed_returns`` is a success, so is
a literal ``True``. Anything else is a failure described as
``Unexpected return `<json>```. Exceptions raised while resolving or
invoking become failures; they never reach the caller.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cronspine.core.errors import TaskResolutionError
from cronspine.core.logging import get_logger
from cronspine.core.result import Err, try_result
from cronspine.execution.registry import HandlerRegistry, get_default_registry
from cronspine.execution.timeout import run_with_timeout
from cronspine.scheduling.models import INSTANCE_PLACEHOLDER, TaskDefinition, TaskInstance

logger = get_logger(__name__)

EXTRA_METHODS = "extra_methods"


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one invocation."""

    success: bool
    value: Any = None
    error: str | None = None


def spread(arguments: Any) -> tuple[tuple, dict]:
    """Map decoded JSON arguments to ``(args, kwargs)``."""
    if arguments is None:
        return (), {}
    if isinstance(arguments, dict):
        return (), dict(arguments)
    if isinstance(arguments, list):
        return tuple(arguments), {}
    return (arguments,), {}


def decode_arguments(raw: str, instance: int) -> Any:
    """Decode stored argument text, substituting the instance placeholder."""
    if not raw:
        return None
    return json.loads(raw.replace(INSTANCE_PLACEHOLDER, str(instance)))


def render_value(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=repr)
    except (TypeError, ValueError):
        return repr(value)


def describe_failure(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class Executor:
    """Resolves and invokes task handlers.

    Args:
        registry: Handler registry, defaults to the process-wide one.
        enforce_time_limit: Abandon invocations that exceed the
            definition's ``max_time``. Off by default: the budget is
            normally enforced by whatever supervises the agent process.
    """

    def __init__(self, registry: HandlerRegistry | None = None, enforce_time_limit: bool = False):
        self.registry = registry or get_default_registry()
        self.enforce_time_limit = enforce_time_limit

    def resolve(self, definition: TaskDefinition) -> Callable[..., Any]:
        """Build the invocable unit for ``definition``.

        Raises:
            HandlerNotFoundError: Unknown handler or factory name.
            TaskResolutionError: A method in the chain is missing or not callable.
        """
        if not definition.object_ref:
            return self.registry.get(definition.handler)

        factory = self.registry.get_factory(definition.object_ref)
        parameters = definition.parameters
        chain: list[Any] = []
        if isinstance(parameters, dict) and EXTRA_METHODS in parameters:
            parameters = dict(parameters)
            chain = parameters.pop(EXTRA_METHODS) or []
            if not isinstance(chain, list):
                raise TaskResolutionError(
                    f"Task '{definition.name}': {EXTRA_METHODS} must be a list"
                )

        args, kwargs = spread(parameters)
        obj = factory(*args, **kwargs)
        for step in chain:
            if not isinstance(step, dict) or not isinstance(step.get("method"), str):
                continue
            method = self._attribute(definition, obj, step["method"])
            args, kwargs = spread(step.get("arguments"))
            obj = method(*args, **kwargs)
        return self._attribute(definition, obj, definition.handler)

    @staticmethod
    def _attribute(definition: TaskDefinition, obj: Any, name: str) -> Callable[..., Any]:
        attr = getattr(obj, name, None)
        if not callable(attr):
            raise TaskResolutionError(
                f"Task '{definition.name}': {type(obj).__name__}.{name} is not callable"
            )
        return attr

    def _invoke(self, definition: TaskDefinition, instance: TaskInstance) -> Any:
        unit = self.resolve(definition)
        args, kwargs = spread(decode_arguments(instance.arguments, instance.instance))
        if self.enforce_time_limit:
            return run_with_timeout(
                unit,
                definition.max_time,
                operation=f"task:{definition.name}",
                args=args,
                kwargs=kwargs,
            )
        return unit(*args, **kwargs)

    def interpret(self, definition: TaskDefinition, value: Any) -> ExecutionOutcome:
        """Classify a handler's return value.

        Allow-list entries match only values of the same type, so ``False``
        never satisfies ``[0]`` and ``1`` never satisfies ``[True]``.
        """
        if definition.allowed_returns is not None and any(
            type(allowed) is type(value) and allowed == value for allowed in definition.allowed_returns
        ):
            return ExecutionOutcome(True, value)
        if value is True:
            return ExecutionOutcome(True, value)
        return ExecutionOutcome(False, value, f"Unexpected return `{render_value(value)}`")

    def execute(self, definition: TaskDefinition, instance: TaskInstance) -> ExecutionOutcome:
        """Run ``instance`` of ``definition``.

        Never raises: errors while resolving, invoking or classifying the
        handler's return value all become a failed outcome.
        """
        result = try_result(lambda: self._invoke(definition, instance)).flat_map(
            lambda value: try_result(lambda: self.interpret(definition, value))
        )
        if isinstance(result, Err):
            error = describe_failure(result.error)
            logger.warning(
                "task_raised",
                task=definition.name,
                arguments=instance.arguments,
                instance=instance.instance,
                error=error,
            )
            return ExecutionOutcome(False, None, error)

        outcome = result.value
        logger.debug(
            "task_returned",
            task=definition.name,
            instance=instance.instance,
            success=outcome.success,
        )
        return outcome


__all__ = [
    "ExecutionOutcome",
    "Executor",
    "decode_arguments",
    "describe_failure",
    "spread",
]
