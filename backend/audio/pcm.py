"""
PCM16 codec and base64 transport helpers.

- float32 samples in [-1.0, 1.0] <-> signed 16-bit little-endian PCM
- raw bytes <-> base64 text for JSON message envelopes

Pure functions only. No resampling, no channel mixing.
"""

from __future__ import annotations

import base64
import binascii
from typing import Sequence

import numpy as np

from audio.frames import DecodedChunk
from constants import (
    PCM16_MAX,
    PCM16_MIN,
    PCM16_SAMPLE_WIDTH_BYTES,
    PCM16_SCALE,
)


class DecodeError(Exception):
    """
    Raised when an audio payload cannot be turned into samples.

    Covers malformed base64, empty payloads and truncated PCM
    (byte length not a whole number of sample frames). The chunk is
    unsafe to play and must be dropped.
    """


def encode_pcm16(samples: Sequence[float] | np.ndarray) -> bytes:
    """
    Convert float samples to PCM16 little-endian bytes.

    Values outside [-1.0, 1.0] are clamped before scaling; the scaled
    value is rounded and clamped again to the int16 range so that +1.0
    maps to 32767 instead of wrapping. NaN encodes as silence.
    """
    audio_f32 = np.asarray(samples, dtype=np.float32).reshape(-1)
    audio_f32 = np.nan_to_num(audio_f32, nan=0.0, posinf=1.0, neginf=-1.0)
    scaled = np.rint(np.clip(audio_f32, -1.0, 1.0) * PCM16_SCALE)
    audio_i16 = np.clip(scaled, PCM16_MIN, PCM16_MAX).astype("<i2")
    return audio_i16.tobytes()


def decode_pcm16(
    pcm_bytes: bytes,
    *,
    sample_rate_hz: int,
    channels: int,
) -> DecodedChunk:
    """
    Convert PCM16 little-endian bytes to a DecodedChunk.

    Interleaved multi-channel input is reshaped to (frames, channels).

    Raises:
        ValueError: sample_rate_hz or channels is not positive.
        DecodeError: payload is empty or truncated.
    """
    if sample_rate_hz <= 0:
        raise ValueError("sample_rate_hz must be > 0")
    if channels <= 0:
        raise ValueError("channels must be > 0")

    frame_width = PCM16_SAMPLE_WIDTH_BYTES * channels
    if not pcm_bytes:
        raise DecodeError("empty PCM payload")
    if len(pcm_bytes) % frame_width != 0:
        raise DecodeError(
            f"PCM length {len(pcm_bytes)} is not a multiple of {frame_width}"
        )

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    audio_f32 = (audio_i16.astype(np.float32) / PCM16_SCALE).reshape(-1, channels)
    return DecodedChunk(
        samples=audio_f32,
        sample_rate_hz=sample_rate_hz,
        channels=channels,
    )


def b64_encode(data: bytes) -> str:
    """Encode raw bytes as ASCII base64 text."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(text: str) -> bytes:
    """
    Decode base64 text to raw bytes.

    Raises:
        DecodeError: text contains characters outside the base64
            alphabet or has invalid padding.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"invalid base64 payload: {e}") from e


def decode_b64_chunk(
    text: str,
    *,
    sample_rate_hz: int,
    channels: int,
) -> DecodedChunk:
    """base64 PCM16 text -> DecodedChunk."""
    return decode_pcm16(
        b64_decode(text),
        sample_rate_hz=sample_rate_hz,
        channels=channels,
    )
