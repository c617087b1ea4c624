"""
Device context contracts.

Implementations:
- audio.devices.SoundDeviceProvider (PortAudio)
- test fakes

Kept free of sounddevice so the session core imports without PortAudio.
"""

from __future__ import annotations

from typing import Protocol

from audio.capture import MicrophoneSource
from audio.playback import PlaybackSink
from constants import CAPTURE_FRAME_SAMPLES, INPUT_SAMPLE_RATE_HZ, OUTPUT_SAMPLE_RATE_HZ


class OutputDevice(PlaybackSink, Protocol):
    """The 24kHz output device context."""

    async def close(self) -> None: ...


class DeviceProvider(Protocol):
    """
    Factory for the session's device contexts.

    acquire_microphone() raises PermissionDenied or DeviceUnavailable.
    open_output() raises DeviceUnavailable.
    """

    async def acquire_microphone(
        self,
        *,
        sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ,
        frame_samples: int = CAPTURE_FRAME_SAMPLES,
    ) -> MicrophoneSource: ...

    async def open_output(
        self,
        *,
        sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
    ) -> OutputDevice: ...
