"""
Session lifecycle state enumeration.

Rules:
- This enum defines ONLY the lifecycle states.
- No behavior, no side effects.
- Transitions are made exclusively by SessionOrchestrator.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of the single live session.

    IDLE -> CONNECTING -> OPEN -> CLOSED
    Any non-terminal state -> FAILED on an unrecoverable error.
    FAILED is left only through disconnect().
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    FAILED = "FAILED"
