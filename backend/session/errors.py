"""
Error taxonomy for the live assistant session.

Fatal during connect (abort the session, surfaced via on_error):
- PermissionDenied
- DeviceUnavailable
- SessionConnectionError

Recovered locally:
- DecodeError  (one inbound audio chunk dropped)
- InvalidMode  (one tool-call entry skipped)
"""

from __future__ import annotations

from audio.pcm import DecodeError


class AssistantError(Exception):
    """Base class for errors surfaced by the live assistant core."""


class PermissionDenied(AssistantError):
    """The user (or OS policy) refused access to the microphone."""


class DeviceUnavailable(AssistantError):
    """No usable input or output audio device exists."""


class SessionConnectionError(AssistantError, ConnectionError):
    """
    Transport or handshake failure, or an error reported by the endpoint.

    Also a builtin ConnectionError so generic network handlers catch it.
    """

    def __init__(self, message: str, *, close_code: int | None = None) -> None:
        super().__init__(message)
        self.close_code = close_code


class InvalidMode(AssistantError):
    """A mode tool call named a mode outside AssistantMode."""

    def __init__(self, value: object, *, call_id: str | None = None) -> None:
        super().__init__(f"Invalid assistant mode: {value!r}")
        self.value = value
        self.call_id = call_id


__all__ = [
    "AssistantError",
    "DecodeError",
    "DeviceUnavailable",
    "InvalidMode",
    "PermissionDenied",
    "SessionConnectionError",
]
