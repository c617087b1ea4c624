"""
HUD event fan-out.

Turns session callbacks into JSON events and hands them to every
connected HUD WebSocket.

Drop rules:
- Each subscriber has a bounded buffer
- On overflow the OLDEST event is dropped (audio levels go stale fast)
- A slow HUD never blocks the audio pipeline
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque

from observability.logger import now_ms
from orchestrator.enums.mode import AssistantMode
from session.callbacks import SessionCallbacks


HUD_BUFFER_EVENTS = 64


@dataclass(eq=False)
class HudSubscriber:
    """Buffered event stream for one HUD connection."""

    max_events: int = HUD_BUFFER_EVENTS
    dropped: int = 0

    def __post_init__(self) -> None:
        self._events: Deque[dict[str, Any]] = deque()
        self._ready = asyncio.Event()

    def push(self, event: dict[str, Any]) -> None:
        if len(self._events) >= self.max_events:
            self._events.popleft()
            self.dropped += 1
        self._events.append(event)
        self._ready.set()

    async def next_event(self) -> dict[str, Any]:
        """Wait for and remove the oldest buffered event."""
        while not self._events:
            self._ready.clear()
            await self._ready.wait()
        return self._events.popleft()

    def __len__(self) -> int:
        return len(self._events)


class HudBroadcaster:
    """Fan-out of HUD events to all subscribers."""

    def __init__(self) -> None:
        self._subscribers: set[HudSubscriber] = set()

    def subscribe(self) -> HudSubscriber:
        sub = HudSubscriber()
        self._subscribers.add(sub)
        return sub

    def unsubscribe(self, sub: HudSubscriber) -> None:
        self._subscribers.discard(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_type: str, **payload: Any) -> None:
        event = {"type": event_type, "ts_ms": now_ms(), **payload}
        for sub in list(self._subscribers):
            sub.push(event)

    def callbacks(self) -> SessionCallbacks:
        """SessionCallbacks that forward every notification to the HUD."""

        def on_mode_change(mode: AssistantMode) -> None:
            self.publish("mode", mode=mode.value)

        return SessionCallbacks(
            on_open=lambda: self.publish("open"),
            on_close=lambda reason: self.publish("close", reason=reason),
            on_error=lambda exc: self.publish(
                "error",
                error=type(exc).__name__,
                message=str(exc),
            ),
            on_audio_level=lambda level: self.publish("level", volume=level),
            on_mode_change=on_mode_change,
        )
