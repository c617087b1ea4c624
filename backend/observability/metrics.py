"""
Session metrics.

Two kinds of measurement, each emitted as exactly one JSONL event via
observability.logger (no aggregation in-process):

- METRIC_TIMER  durations on the monotonic clock
                (live handshake, device release)
- METRIC_GAUGE  point-in-time values
                (seconds of model audio buffered ahead of the speaker)

Context keywords (session_id, state, ...) are copied into the event
as-is.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from observability.logger import log_event


@dataclass(frozen=True)
class _Timer:
    name: str
    started_ns: int
    context: dict[str, Any] = field(default_factory=dict)


_active_timers: dict[str, _Timer] = {}


def start_timer(name: str, **context: Any) -> str:
    """
    Start a monotonic timer and return its opaque id.

    Prefer timed(); a bare start_timer() must be paired with
    stop_timer() in a finally block.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = _Timer(name, time.monotonic_ns(), dict(context))
    return timer_id


def stop_timer(timer_id: str, **extra: Any) -> int | None:
    """
    Stop a timer and emit METRIC_TIMER.

    extra is merged over the context given at start.
    Returns duration_ms, or None for an unknown or already stopped id.
    """
    timer = _active_timers.pop(timer_id, None)
    if timer is None:
        return None

    duration_ms = (time.monotonic_ns() - timer.started_ns) // 1_000_000
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": timer.name,
        "value_ms": duration_ms,
        **timer.context,
        **extra,
    })
    return duration_ms


@contextmanager
def timed(name: str, **context: Any) -> Iterator[None]:
    """
    Time a block. The metric is emitted once, also when the block raises;
    the exception type is recorded as "failed".

        with timed("live_handshake", session_id=session.session_id):
            live = await connector.connect(...)
    """
    timer_id = start_timer(name, **context)
    try:
        yield
    except BaseException as e:
        stop_timer(timer_id, failed=type(e).__name__)
        raise
    stop_timer(timer_id)


def emit_gauge(name: str, value: float, **context: Any) -> None:
    """Emit one METRIC_GAUGE event."""
    log_event({
        "event_type": "METRIC_GAUGE",
        "metric": name,
        "value": value,
        **context,
    })


def active_timer_count() -> int:
    """Number of timers started but not yet stopped."""
    return len(_active_timers)
