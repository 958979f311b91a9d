"""Handler Registry - injectable name → handler lookup.

Task definitions stored in the database name their work by string. The
registry maps those names to Python callables registered at startup, so
the executor never imports or evaluates anything named by a table row.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(name, handler)          ─ "task:{name}" → TaskHandler
      ├── .register_factory(name, factory)  ─ "factory:{name}" → object factory
      ├── .get(name) / .get_factory(name)   ─ lookup (HandlerNotFoundError)
      ├── .has(name) / .has_factory(name)   ─ existence check
      ├── .unregister(name, kind="task")
      └── .list_handlers(kind=None)         ─ all registered keys

    Decorators (use global registry unless one is passed):
      register_task(name)        → registers as "task:{name}"
      register_factory(name)     → registers as "factory:{name}"

    get_default_registry()     ─ module-level singleton
    reset_default_registry()   ─ clear for testing

A factory builds an object from a task's ``parameters``; the task's
``handler`` then names the method to call on that object (see
``cronspine.execution.executor``).

BEST PRACTICES
──────────────
- Register with the decorators in modules listed in
  ``CRONSPINE_HANDLER_MODULES`` (or ``cronspine run --handlers``).
- Pass an explicit ``HandlerRegistry`` in tests and call
  ``reset_default_registry()`` in fixtures.
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from cronspine.core.errors import HandlerNotFoundError

TASK = "task"
FACTORY = "factory"


@runtime_checkable
class TaskHandler(Protocol):
    """A registered unit of work.

    Called with the instance's decoded arguments (list → positional,
    dict → keyword, scalar → single argument). The return value is
    interpreted by the executor: ``True`` or an allow-listed value means
    success.
    """

    def __call__(self, *args: Any, **kwargs: Any) -> Any: ...


class HandlerRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>>
        >>> @register_task("cleanup", registry=registry)
        ... def cleanup(days=30):
        ...     return True
        >>>
        >>> registry.get("cleanup")(days=7)
        True
    """

    def __init__(self):
        self._handlers: dict[str, Callable] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def _put(self, kind: str, name: str, handler: Callable, description: str | None) -> None:
        if not callable(handler):
            raise TypeError(f"{kind} '{name}' is not callable: {handler!r}")
        key = f"{kind}:{name}"
        self._handlers[key] = handler
        self._metadata[key] = {"kind": kind, "name": name, "description": description}

    def _lookup(self, kind: str, name: str) -> Callable:
        key = f"{kind}:{name}"
        if key not in self._handlers:
            available = [n for k, n in self.list_handlers(kind)]
            raise HandlerNotFoundError(key, available)
        return self._handlers[key]

    def register(self, name: str, handler: TaskHandler, description: str | None = None) -> None:
        """Register a task handler under ``name``."""
        self._put(TASK, name, handler, description)

    def register_factory(
        self, name: str, factory: Callable[..., Any], description: str | None = None
    ) -> None:
        """Register an object factory under ``name``."""
        self._put(FACTORY, name, factory, description)

    def get(self, name: str) -> TaskHandler:
        """Get a task handler.

        Raises:
            HandlerNotFoundError: If no handler is registered under ``name``
        """
        return self._lookup(TASK, name)

    def get_factory(self, name: str) -> Callable[..., Any]:
        """Get an object factory.

        Raises:
            HandlerNotFoundError: If no factory is registered under ``name``
        """
        return self._lookup(FACTORY, name)

    def has(self, name: str) -> bool:
        return f"{TASK}:{name}" in self._handlers

    def has_factory(self, name: str) -> bool:
        return f"{FACTORY}:{name}" in self._handlers

    def get_metadata(self, name: str, kind: str = TASK) -> dict[str, Any] | None:
        """Get handler metadata (description)."""
        return self._metadata.get(f"{kind}:{name}")

    def list_handlers(self, kind: str | None = None) -> list[tuple[str, str]]:
        """List all registered handlers as sorted (kind, name) tuples."""
        handlers = []
        for key in self._handlers.keys():
            k, n = key.split(":", 1)
            if kind is None or k == kind:
                handlers.append((k, n))
        return sorted(handlers)

    def unregister(self, name: str, kind: str = TASK) -> bool:
        """Unregister a handler.

        Returns:
            True if handler was removed, False if not found
        """
        key = f"{kind}:{name}"
        if key in self._handlers:
            del self._handlers[key]
            del self._metadata[key]
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._metadata.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: HandlerRegistry | None = None


def get_default_registry() -> HandlerRegistry:
    """Get the global default registry.

    Creates it lazily on first access.
    """
    global _default_registry
    if _default_registry is None:
        _default_registry = HandlerRegistry()
    return _default_registry


def reset_default_registry() -> None:
    """Reset the global registry (for testing)."""
    global _default_registry
    _default_registry = None


# === DECORATOR API ===


def register_task(
    name: str,
    registry: HandlerRegistry | None = None,
    description: str | None = None,
):
    """Decorator to register a task handler.

    Example:
        >>> @register_task("purge_sessions")
        ... def purge_sessions(older_than=86400):
        ...     return True
    """

    def decorator(func: Callable) -> Callable:
        target = registry or get_default_registry()
        target.register(name, func, description=description or func.__doc__)
        return func

    return decorator


def register_factory(
    name: str,
    registry: HandlerRegistry | None = None,
    description: str | None = None,
):
    """Decorator to register an object factory (usually a class).

    Example:
        >>> @register_factory("mailer")
        ... class Mailer:
        ...     def __init__(self, host="localhost"):
        ...         self.host = host
        ...     def flush(self):
        ...         return True
    """

    def decorator(factory: Callable) -> Callable:
        target = registry or get_default_registry()
        target.register_factory(name, factory, description=description or factory.__doc__)
        return factory

    return decorator


__all__ = [
    "TaskHandler",
    "HandlerRegistry",
    "get_default_registry",
    "reset_default_registry",
    "register_task",
    "register_factory",
]
