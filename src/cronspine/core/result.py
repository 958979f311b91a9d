"""
Result envelope for consistent success/failure handling.

Operations that are expected to fail as a matter of course (resolving a
handler named in a database row, invoking user code, classifying what it
returned) produce ``Ok[T]`` or ``Err[T]`` instead of raising. The executor
chains them with ``flat_map`` so one bad task cannot abort the rest of a
claimed batch.

Examples:
    >>> import json
    >>> try_result(lambda: json.loads('{"a": 1}')).flat_map(lambda d: Ok(d["a"]))
    Ok(value=1)
    >>> match try_result(lambda: json.loads('invalid')):
    ...     case Err(error):
    ...         print(type(error).__name__)
    JSONDecodeError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Chain to another Result-returning function."""
        return f(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error. ``flat_map`` short-circuits."""

    error: Exception

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return Err(self.error)


Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """
    Execute a function and wrap its outcome in a Result.

    Bridges exception-throwing code (handlers, factories) into the Result
    world. Wrap calls with arguments in a lambda.
    """
    try:
        return Ok(f())
    except Exception as e:
        return Err(e)


__all__ = ["Ok", "Err", "Result", "try_result"]
