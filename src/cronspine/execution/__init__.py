"""cronspine.execution -- turning task definitions into handler calls.

Architecture::

    registry.py   HandlerRegistry, register_task / register_factory decorators
    handlers.py   Builtin reference handlers (noop, echo, sleep, fail, counter)
    timeout.py    run_with_timeout() for optional wall-clock budgets
    executor.py   Executor: resolve, invoke, interpret the return value

Handler modules register into the process-wide registry on import; the
CLI imports them with ``cronspine run --handlers pkg.module``.
"""

from cronspine.execution.executor import ExecutionOutcome, Executor
from cronspine.execution.registry import (
    HandlerRegistry,
    TaskHandler,
    get_default_registry,
    register_factory,
    register_task,
    reset_default_registry,
)

__all__ = [
    "ExecutionOutcome",
    "Executor",
    "HandlerRegistry",
    "TaskHandler",
    "get_default_registry",
    "register_factory",
    "register_task",
    "reset_default_registry",
]
