"""
Caller-facing callback surface.

All callbacks are fire-and-forget:
- Return values are ignored
- An awaitable return value is scheduled as a task, never awaited
- An exception raised by a callback is logged and does not reach the
  audio pipeline
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable

from observability.logger import log_event


def _noop(*_: Any) -> None:
    return None


@dataclass
class SessionCallbacks:
    """Hooks consumed by the HUD layer."""

    on_open: Callable[[], Any] = _noop
    on_close: Callable[[str], Any] = _noop
    on_error: Callable[[Exception], Any] = _noop
    on_audio_level: Callable[[float], Any] = _noop
    on_mode_change: Callable[[Any], Any] = _noop

    _pending: set[asyncio.Task[Any]] = field(default_factory=set, init=False, repr=False)

    def fire(self, name: str, *args: Any) -> None:
        """Invoke callback `name` without waiting on it."""
        fn = getattr(self, name)
        try:
            result = fn(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CALLBACK_ERROR",
                "callback": name,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event({
                "event_type": "CALLBACK_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
