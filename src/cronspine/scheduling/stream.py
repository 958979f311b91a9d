"""Streaming transport for long-lived callers.

When an agent is given an ``EventStream`` it runs in streaming mode: every
logged event is also pushed to the caller as a Server-Sent Events frame,
and the agent keeps looping (if ``sse_loop`` is on) until the caller goes
away.

Frame format::

    retry: 10000
    id: 1735689600123456789
    event: InstanceStart
    data: 1/3 backup starting

``retry`` is 0 on the last frame of a stream and on error frames, telling
the client not to reconnect.
"""

from __future__ import annotations

import time
from typing import Protocol, TextIO, runtime_checkable

from cronspine.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class EventStream(Protocol):
    """Push channel to a streaming caller."""

    @property
    def connected(self) -> bool:
        """False once the caller has gone away or the stream was closed."""
        ...

    def send(self, message: str, event: str, retry: int) -> None: ...

    def close(self) -> None: ...


def format_frame(message: str, event: str, retry: int, event_id: int | None = None) -> str:
    """Render one SSE frame; multi-line messages become several data lines."""
    event_id = time.time_ns() if event_id is None else event_id
    data = "".join(f"data: {line}\n" for line in (message.splitlines() or [""]))
    return f"retry: {retry}\nid: {event_id}\nevent: {event}\n{data}\n"


class SSEWriter:
    """``EventStream`` over a text stream (stdout, a socket file, ...)."""

    def __init__(self, out: TextIO):
        self._out = out
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def send(self, message: str, event: str, retry: int) -> None:
        if not self._connected:
            return
        try:
            self._out.write(format_frame(message, event, retry))
            self._out.flush()
        except (BrokenPipeError, ConnectionError, ValueError) as e:
            # ValueError: write to a closed file
            logger.info("stream_disconnected", error=str(e))
            self._connected = False

    def close(self) -> None:
        if self._connected:
            try:
                self._out.flush()
            except (BrokenPipeError, ConnectionError, ValueError):
                pass
        self._connected = False


class MemoryStream:
    """Collects frames in memory; used by tests and embedding callers."""

    def __init__(self, disconnect_after: int | None = None):
        self.frames: list[tuple[str, str, int]] = []
        self._connected = True
        self._disconnect_after = disconnect_after

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def events(self) -> list[str]:
        return [event for _, event, _ in self.frames]

    def send(self, message: str, event: str, retry: int) -> None:
        if not self._connected:
            return
        self.frames.append((message, event, retry))
        if self._disconnect_after is not None and len(self.frames) >= self._disconnect_after:
            self._connected = False

    def close(self) -> None:
        self._connected = False


__all__ = ["EventStream", "MemoryStream", "SSEWriter", "format_frame"]
