"""
Live session contract.

This module defines the *interface only*: no message dispatch, no audio
scheduling, no mode logic lives here.

Key invariants:
- A LiveSession exists only after the setup handshake completed.
  Callers never see a pending or half-open session.
- Inbound messages are delivered one at a time, in arrival order, on the
  event loop, through the on_message callback given to connect().
- Send failures raise SessionConnectionError; they are never swallowed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Sequence

from protocol.live import LiveServerMessage, LiveSetup, ToolResponse


MessageFn = Callable[[LiveServerMessage], None]
ClosedFn = Callable[[int, str], None]


class LiveSession(ABC):
    """An open bidirectional session with the remote speech model."""

    @abstractmethod
    async def send_audio_frame(self, pcm_bytes: bytes) -> None:
        """
        Send one encoded microphone frame (PCM16LE, 16kHz mono).

        Raises:
            SessionConnectionError: transport failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def send_tool_response(self, responses: Sequence[ToolResponse]) -> None:
        """
        Send acknowledgements for one tool-call batch.

        Raises:
            SessionConnectionError: transport failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Close the session.

        Idempotent. on_closed is NOT invoked for a locally initiated close.
        """
        raise NotImplementedError


class LiveConnector(ABC):
    """Opens LiveSessions."""

    @abstractmethod
    async def connect(
        self,
        *,
        setup: LiveSetup,
        on_message: MessageFn,
        on_closed: ClosedFn,
    ) -> LiveSession:
        """
        Open the transport, send setup, and wait for setupComplete.

        on_closed(code, reason) fires once if the remote side ends the
        session (normal close or error).

        Raises:
            SessionConnectionError: transport, handshake or timeout failure.
        """
        raise NotImplementedError
