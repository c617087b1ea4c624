"""
AUDIO AND WIRE CONSTANTS
------------------------
Single source of truth for the invariants of the live audio pipeline.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# PCM16 sample format
# =============================================================================

PCM16_SAMPLE_WIDTH_BYTES: Final[int] = 2  # signed 16-bit, little-endian
PCM16_SCALE: Final[float] = 32768.0
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767

# =============================================================================
# Capture (microphone -> remote endpoint)
# =============================================================================

INPUT_SAMPLE_RATE_HZ: Final[int] = 16_000
INPUT_CHANNELS: Final[int] = 1

CAPTURE_FRAME_SAMPLES: Final[int] = 4096
CAPTURE_FRAME_BYTES: Final[int] = CAPTURE_FRAME_SAMPLES * PCM16_SAMPLE_WIDTH_BYTES

# RMS is in [0, 1]; the HUD expects roughly 0..150
AUDIO_LEVEL_SCALE: Final[float] = 100.0

# =============================================================================
# Playback (remote endpoint -> speaker)
# =============================================================================

OUTPUT_SAMPLE_RATE_HZ: Final[int] = 24_000
OUTPUT_CHANNELS: Final[int] = 1

# Device block size for the output callback (~42ms @ 24kHz)
OUTPUT_BLOCK_SAMPLES: Final[int] = 1024

# =============================================================================
# Live endpoint
# =============================================================================

LIVE_WS_HOST: Final[str] = "generativelanguage.googleapis.com"
LIVE_WS_PATH: Final[str] = (
    "/ws/google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
LIVE_MODEL_DEFAULT: Final[str] = "gemini-2.5-flash-native-audio-preview-09-2025"
LIVE_VOICE_DEFAULT: Final[str] = "Fenrir"
LIVE_INPUT_MIME_TYPE: Final[str] = f"audio/pcm;rate={INPUT_SAMPLE_RATE_HZ}"

LIVE_HANDSHAKE_TIMEOUT_S: Final[float] = 10.0

# RFC 6455 close codes
WS_CLOSE_NORMAL: Final[int] = 1000
WS_CLOSE_ABNORMAL: Final[int] = 1006

# =============================================================================
# Mode tool
# =============================================================================

MODE_TOOL_NAME: Final[str] = "setAssistantMode"
MODE_TOOL_ARG: Final[str] = "mode"

# =============================================================================
# Helper Functions
# =============================================================================

def samples_to_seconds(num_samples: int, sample_rate_hz: int) -> float:
    """
    Convert a sample count to a duration in seconds.

    Non-positive sample counts return 0.0.
    """
    if num_samples <= 0:
        return 0.0
    return num_samples / float(sample_rate_hz)


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing one PCM stream direction.

    Convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int
    channels: int
    sample_width_bytes: int = PCM16_SAMPLE_WIDTH_BYTES

    @property
    def bytes_per_second(self) -> int:
        """Return number of PCM bytes per second of audio."""
        return self.sample_rate_hz * self.channels * self.sample_width_bytes


INPUT_FORMAT: Final[AudioFormat] = AudioFormat(
    sample_rate_hz=INPUT_SAMPLE_RATE_HZ,
    channels=INPUT_CHANNELS,
)
OUTPUT_FORMAT: Final[AudioFormat] = AudioFormat(
    sample_rate_hz=OUTPUT_SAMPLE_RATE_HZ,
    channels=OUTPUT_CHANNELS,
)
