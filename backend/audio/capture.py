"""
Microphone capture path.

Per frame (4096 mono samples @ 16kHz):
1. RMS loudness x AUDIO_LEVEL_SCALE -> on_level (fire-and-forget)
2. PCM16 encode -> send_frame (outbound channel)

Frames are independent: no cross-frame buffering.
The capture path never owns the device; it only taps it.
"""

from __future__ import annotations

from typing import Callable, Protocol

import numpy as np

from audio.frames import CaptureFrame
from audio.pcm import encode_pcm16
from constants import AUDIO_LEVEL_SCALE


FrameFn = Callable[[np.ndarray], None]
LevelFn = Callable[[float], None]
SendFrameFn = Callable[[bytes], None]


class MicrophoneSource(Protocol):
    """
    An acquired microphone stream (the 16kHz input device context).

    start(on_frame):
        Begin delivering mono float32 frames to on_frame on the event
        loop thread, in capture order.

    stop():
        Disconnect the tap. No frames are delivered afterwards.

    close():
        Stop every underlying device stream and release the device.
    """

    def start(self, on_frame: FrameFn) -> None: ...

    def stop(self) -> None: ...

    async def close(self) -> None: ...


def rms_level(samples: np.ndarray) -> float:
    """Root-mean-square of a frame; 0.0 for an empty frame."""
    if samples.size == 0:
        return 0.0
    audio = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(np.square(audio))))


class AudioCapturePath:
    """
    Taps a MicrophoneSource and forwards encoded frames.

    Both callbacks are synchronous and must not block: on_level feeds a
    visualizer, send_frame enqueues onto the outbound channel.
    """

    def __init__(
        self,
        *,
        source: MicrophoneSource,
        send_frame: SendFrameFn,
        on_level: LevelFn,
        level_scale: float = AUDIO_LEVEL_SCALE,
    ) -> None:
        self._source = source
        self._send_frame = send_frame
        self._on_level = on_level
        self._level_scale = level_scale

        self._next_seq = 1
        self._active = False

    @property
    def active(self) -> bool:
        """True between start() and stop()."""
        return self._active

    @property
    def frames_processed(self) -> int:
        """Frames forwarded since construction."""
        return self._next_seq - 1

    def start(self) -> None:
        """Connect the tap. Idempotent."""
        if self._active:
            return
        self._active = True
        self._source.start(self.process_samples)

    def stop(self) -> None:
        """Disconnect the tap. Idempotent."""
        if not self._active:
            return
        self._active = False
        self._source.stop()

    def process_samples(self, samples: np.ndarray) -> CaptureFrame | None:
        """
        Handle one device frame.

        Frames arriving after stop() are ignored (a device callback may
        already be queued on the loop when the tap is removed).
        """
        if not self._active:
            return None

        frame = CaptureFrame(
            sequence_num=self._next_seq,
            samples=np.asarray(samples, dtype=np.float32).reshape(-1),
        )
        self._next_seq += 1

        self._on_level(rms_level(frame.samples) * self._level_scale)
        self._send_frame(encode_pcm16(frame.samples))
        return frame
