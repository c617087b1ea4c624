"""
Voice session container.

- Owned and mutated by SessionOrchestrator only
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from adapters.live.base import LiveSession
from constants import INPUT_SAMPLE_RATE_HZ, OUTPUT_SAMPLE_RATE_HZ
from orchestrator.enums.state import SessionState


def new_session_id() -> str:
    """Short random id used to correlate log lines."""
    return f"sess_{uuid4().hex[:12]}"


@dataclass
class VoiceSession:
    """Mutable runtime container for one live session."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str = field(default_factory=new_session_id)
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.IDLE

    # ------------------------------------------------------------------
    # Negotiated audio format
    # ------------------------------------------------------------------

    input_sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ
    output_sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ

    # ------------------------------------------------------------------
    # Connection handle (set only after the handshake resolves)
    # ------------------------------------------------------------------

    live: LiveSession | None = None

    # ------------------------------------------------------------------
    # Counters (observability only)
    # ------------------------------------------------------------------

    frames_sent: int = 0
    chunks_played: int = 0
    chunks_dropped: int = 0
    interrupts: int = 0

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
        }

    def snapshot(self) -> dict[str, Any]:
        """Lightweight summary for logging and the HUD bridge."""
        return {
            **self.log_context(),
            "input_sample_rate": self.input_sample_rate_hz,
            "output_sample_rate": self.output_sample_rate_hz,
            "frames_sent": self.frames_sent,
            "chunks_played": self.chunks_played,
            "chunks_dropped": self.chunks_dropped,
            "interrupts": self.interrupts,
        }
