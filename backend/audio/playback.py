"""
Gapless playback scheduling against a monotonic output clock.

Rules:
- Each chunk starts at max(next_start_time, sink.now())
- next_start_time advances by the chunk duration after every enqueue
- interrupt() stops every live handle and resets next_start_time to 0

Chunks therefore play back-to-back in enqueue order with no gap and no
overlap, until an interrupt. After an interrupt the next chunk starts at
the device's current time.

The device clock is hidden behind PlaybackSink so tests can drive the
scheduler with a fake clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from audio.frames import DecodedChunk


StopFn = Callable[[], None]


class PlaybackSink(Protocol):
    """
    Output device abstraction.

    now():
        Current output time in seconds on the device clock.

    schedule_at(start_time, chunk, on_ended):
        Begin playing chunk at start_time. on_ended must be invoked on
        the event loop thread when the chunk finishes naturally, and
        never after the returned stop function has been called.
        Returns a stop function; calling it more than once is safe.
    """

    def now(self) -> float: ...

    def schedule_at(
        self,
        start_time: float,
        chunk: DecodedChunk,
        on_ended: Callable[[], None],
    ) -> StopFn: ...


class HandleStatus(str, Enum):
    """Lifecycle of one scheduled chunk."""
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"


@dataclass(eq=False)
class PlaybackHandle:
    """
    One scheduled, playing or pending chunk.

    Terminal statuses (COMPLETED, STOPPED) are final; later complete()
    or stop() calls are no-ops.
    """
    start_time: float
    duration: float
    status: HandleStatus = HandleStatus.SCHEDULED
    _stop_fn: StopFn | None = field(default=None, repr=False)
    _on_complete: list[Callable[["PlaybackHandle"], None]] = field(
        default_factory=list, repr=False
    )

    @property
    def end_time(self) -> float:
        """Scheduled end on the device clock."""
        return self.start_time + self.duration

    @property
    def done(self) -> bool:
        """True once completed or stopped."""
        return self.status is not HandleStatus.SCHEDULED

    def add_completion_callback(self, fn: Callable[["PlaybackHandle"], None]) -> None:
        """Run fn when the chunk finishes naturally (not on stop)."""
        self._on_complete.append(fn)

    def complete(self) -> None:
        """Mark natural completion and run completion callbacks."""
        if self.done:
            return
        self.status = HandleStatus.COMPLETED
        callbacks, self._on_complete = self._on_complete, []
        for fn in callbacks:
            fn(self)

    def stop(self) -> None:
        """Force-stop playback. Safe on a handle that already finished."""
        if self.done:
            return
        self.status = HandleStatus.STOPPED
        self._on_complete = []
        if self._stop_fn is not None:
            self._stop_fn()


class PlaybackScheduler:
    """
    Owns the live handle set and the playback clock.

    Only the session orchestrator's dispatch calls enqueue()/interrupt().
    """

    def __init__(self, *, sink: PlaybackSink) -> None:
        self._sink = sink
        self._live: set[PlaybackHandle] = set()
        self._next_start_time: float = 0.0

    @property
    def next_start_time(self) -> float:
        """The playback clock: earliest start for the next chunk."""
        return self._next_start_time

    @property
    def live_handles(self) -> frozenset[PlaybackHandle]:
        """Handles neither completed nor stopped."""
        return frozenset(self._live)

    @property
    def buffered_s(self) -> float:
        """Seconds of scheduled audio still ahead of the device clock."""
        return max(0.0, self._next_start_time - self._sink.now())

    def enqueue(self, chunk: DecodedChunk) -> PlaybackHandle:
        """Schedule chunk directly after everything already scheduled."""
        start = max(self._next_start_time, self._sink.now())
        handle = PlaybackHandle(start_time=start, duration=chunk.duration_s)
        handle.add_completion_callback(self._live.discard)

        self._live.add(handle)
        handle._stop_fn = self._sink.schedule_at(  # pylint: disable=protected-access
            start, chunk, handle.complete
        )

        self._next_start_time = start + chunk.duration_s
        return handle

    def interrupt(self) -> int:
        """
        Stop all live playback and reset the clock.

        Returns the number of handles stopped.
        """
        stopped = 0
        for handle in list(self._live):
            handle.stop()
            stopped += 1

        self._live.clear()
        self._next_start_time = 0.0
        return stopped
