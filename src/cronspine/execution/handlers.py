"""Built-in handlers - small reference tasks for smoke tests and demos.

These register into the global
:class:`~cronspine.execution.registry.HandlerRegistry` on import, so a
fresh database can be exercised without writing any handler module::

    cronspine task add heartbeat --handler noop
    cronspine schedule add heartbeat --frequency 60
    cronspine run --handlers cronspine.execution.handlers

ARCHITECTURE
────────────
::

    Handlers (auto-registered on import):
      task:noop       ─ returns True
      task:echo       ─ returns its arguments (needs allowed_returns to pass)
      task:sleep      ─ sleeps N seconds, returns True
      task:fail       ─ always raises RuntimeError

    Factories:
      factory:counter ─ object with increment()/value(), for chained methods
"""

from __future__ import annotations

import time
from typing import Any

from cronspine.core.logging import get_logger
from cronspine.execution.registry import (
    HandlerRegistry,
    get_default_registry,
    register_factory,
    register_task,
)

logger = get_logger(__name__)


@register_task("noop", description="Do nothing and succeed.")
def noop_handler(*args: Any, **kwargs: Any) -> bool:
    return True


@register_task("echo", description="Return the arguments unchanged.")
def echo_handler(*args: Any, **kwargs: Any) -> Any:
    """Echo - returns kwargs if given, else the positional arguments."""
    logger.info("echo_invoked", args=len(args), kwargs=sorted(kwargs))
    if kwargs:
        return kwargs
    if len(args) == 1:
        return args[0]
    return list(args)


@register_task("sleep", description="Sleep for N seconds (default 1).")
def sleep_handler(seconds: float = 1) -> bool:
    """Sleep - useful for testing long-running tasks, hangs and timeouts."""
    logger.info("sleep_invoked", seconds=float(seconds))
    time.sleep(float(seconds))
    return True


@register_task("fail", description="Always raises RuntimeError (testing).")
def fail_handler(message: str = "intentional test failure") -> bool:
    raise RuntimeError(message)


@register_factory("counter", description="Stateful counter for method chains.")
class Counter:
    def __init__(self, start: int = 0):
        self.count = int(start)

    def increment(self, by: int = 1) -> Counter:
        self.count += int(by)
        return self

    def value(self) -> int:
        return self.count

    def at_least(self, threshold: int) -> bool:
        return self.count >= int(threshold)


BUILTIN_TASKS = {
    "noop": noop_handler,
    "echo": echo_handler,
    "sleep": sleep_handler,
    "fail": fail_handler,
}
BUILTIN_FACTORIES = {"counter": Counter}


def register_builtins(registry: HandlerRegistry | None = None) -> HandlerRegistry:
    """(Re-)register the built-ins, e.g. into a registry created after import."""
    target = registry or get_default_registry()
    for name, handler in BUILTIN_TASKS.items():
        target.register(name, handler, description=handler.__doc__)
    for name, factory in BUILTIN_FACTORIES.items():
        target.register_factory(name, factory, description=factory.__doc__)
    return target
