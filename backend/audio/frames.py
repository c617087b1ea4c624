"""
Audio frame primitives.

Pure data containers only.
No behavior beyond derived properties, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from constants import samples_to_seconds


@dataclass(frozen=True)
class CaptureFrame:
    """
    One fixed-size block of microphone samples.

    sequence_num:
        Monotonic per capture session, starting at 1.
        Used for logging only.

    samples:
        Mono float32 samples in [-1.0, 1.0].
    """
    sequence_num: int
    samples: np.ndarray


@dataclass(frozen=True)
class DecodedChunk:
    """
    One decoded block of model audio, ready for scheduling.

    samples:
        float32 array shaped (frames, channels).
    """
    samples: np.ndarray
    sample_rate_hz: int
    channels: int

    @property
    def num_frames(self) -> int:
        """Number of sample frames (samples per channel)."""
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        """Playback duration in seconds."""
        return samples_to_seconds(self.num_frames, self.sample_rate_hz)
