"""Timeout enforcement for task handlers.

The scheduler does not preempt running work: a task's ``max_time`` is
primarily the hang threshold used by recovery. Agents started with
``enforce_time_limit`` additionally run each handler through
``run_with_timeout`` so the agent itself stops waiting once the budget
is spent.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────────┐
        │ run_with_timeout(handler, 30.0, args=(...), kwargs={...})      │
        │     │                                                          │
        │     ▼                                                          │
        │ ThreadPoolExecutor(max_workers=1)                              │
        │  - handler runs in a worker thread                             │
        │  - caller waits at most timeout_seconds                        │
        │  - on timeout raises TimeoutExpired; the thread is abandoned   │
        └────────────────────────────────────────────────────────────────┘

Guardrails:
    - Python threads cannot be killed; an abandoned handler keeps running
      in the background until it returns.
    - Not suitable for CPU-bound handlers that must actually stop.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being abandoned
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using ThreadPoolExecutor.

    Raises:
        TimeoutExpired: If execution exceeds timeout
        Exception: Any exception raised by func

    Example:
        >>> run_with_timeout(sum, 5.0, args=([1, 2, 3],))
        6
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = pool.submit(func, *(args or ()), **(kwargs or {}))
    try:
        return future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation or getattr(func, "__name__", "unknown"),
        ) from None
    finally:
        # Do not block on a handler that overran
        pool.shutdown(wait=False)


__all__ = ["TimeoutExpired", "run_with_timeout"]
