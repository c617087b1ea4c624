"""
PortAudio-backed device I/O (sounddevice).

Two device contexts per session:
- Input:  16kHz mono float32, 4096-sample blocks, feeds AudioCapturePath
- Output: 24kHz mono float32, sample-clock scheduled mixer, PlaybackSink

PortAudio callbacks run on a device thread. Everything they hand to the
pipeline is marshalled onto the asyncio loop with call_soon_threadsafe,
which preserves capture order.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
import sounddevice

from audio.capture import FrameFn
from audio.frames import DecodedChunk
from audio.playback import StopFn
from constants import (
    CAPTURE_FRAME_SAMPLES,
    INPUT_CHANNELS,
    INPUT_SAMPLE_RATE_HZ,
    OUTPUT_BLOCK_SAMPLES,
    OUTPUT_CHANNELS,
    OUTPUT_SAMPLE_RATE_HZ,
)
from observability.logger import log_event
from session.errors import AssistantError, DeviceUnavailable, PermissionDenied


def classify_device_error(exc: Exception) -> AssistantError:
    """Map a PortAudio failure onto the session error taxonomy."""
    text = str(exc)
    lowered = text.lower()
    if "permission" in lowered or "denied" in lowered or "not authorized" in lowered:
        return PermissionDenied(text)
    return DeviceUnavailable(text)


def _post(loop: asyncio.AbstractEventLoop, fn: Callable[..., None], *args: Any) -> None:
    try:
        loop.call_soon_threadsafe(fn, *args)
    except RuntimeError:
        # Loop already closed during teardown; nothing left to notify.
        pass


# ---------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------

class SoundDeviceMicrophone:
    """
    An open, running input stream.

    The stream runs from acquisition until close(); start()/stop() only
    connect and disconnect the tap.
    """

    def __init__(self, *, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._stream: sounddevice.InputStream | None = None
        self._on_frame: FrameFn | None = None

    def attach(self, stream: sounddevice.InputStream) -> None:
        """Bind the opened stream (provider use only)."""
        self._stream = stream

    def start(self, on_frame: FrameFn) -> None:
        self._on_frame = on_frame

    def stop(self) -> None:
        self._on_frame = None

    async def close(self) -> None:
        """Stop and close the stream, releasing the device."""
        self._on_frame = None
        stream, self._stream = self._stream, None
        if stream is None:
            return
        await asyncio.to_thread(_stop_and_close, stream)
        log_event({"event_type": "MIC_RELEASED"})

    # PortAudio thread
    def callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        """sounddevice InputStream callback."""
        if self._on_frame is None:
            return
        _post(self._loop, self._deliver, indata[:, 0].copy())

    # Event loop thread
    def _deliver(self, samples: np.ndarray) -> None:
        on_frame = self._on_frame
        if on_frame is not None:
            on_frame(samples)


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

@dataclass(eq=False)
class _Scheduled:
    start_sample: int
    samples: np.ndarray  # (frames, 1)
    on_ended: Callable[[], None]
    stopped: bool = False

    @property
    def end_sample(self) -> int:
        return self.start_sample + int(self.samples.shape[0])


class SoundDeviceOutput:
    """
    Output stream with a sample-counting clock.

    now() is the number of samples handed to PortAudio divided by the
    sample rate, so it starts at 0.0 when the stream opens and never
    goes backwards.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
    ) -> None:
        self._loop = loop
        self._rate = sample_rate_hz
        self._lock = threading.Lock()
        self._entries: list[_Scheduled] = []
        self._position = 0
        self._stream: sounddevice.OutputStream | None = None

    def attach(self, stream: sounddevice.OutputStream) -> None:
        """Bind the opened stream (provider use only)."""
        self._stream = stream

    def now(self) -> float:
        with self._lock:
            return self._position / self._rate

    def schedule_at(
        self,
        start_time: float,
        chunk: DecodedChunk,
        on_ended: Callable[[], None],
    ) -> StopFn:
        samples = chunk.samples
        if chunk.channels != OUTPUT_CHANNELS:
            samples = samples.mean(axis=1, keepdims=True)

        entry = _Scheduled(
            start_sample=int(round(start_time * self._rate)),
            samples=samples.astype(np.float32, copy=False),
            on_ended=on_ended,
        )
        with self._lock:
            # A start already in the past plays from now, whole.
            entry.start_sample = max(entry.start_sample, self._position)
            self._entries.append(entry)

        def stop() -> None:
            entry.stopped = True
            with self._lock:
                if entry in self._entries:
                    self._entries.remove(entry)

        return stop

    async def close(self) -> None:
        """Stop and close the stream; drops anything still scheduled."""
        with self._lock:
            for entry in self._entries:
                entry.stopped = True
            self._entries.clear()
        stream, self._stream = self._stream, None
        if stream is None:
            return
        await asyncio.to_thread(_stop_and_close, stream)
        log_event({"event_type": "OUTPUT_RELEASED"})

    # PortAudio thread
    def callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        """sounddevice OutputStream callback: mix everything due in this block."""
        outdata.fill(0)
        finished: list[_Scheduled] = []

        with self._lock:
            block_start = self._position
            block_end = block_start + frames

            for entry in self._entries:
                lo = max(entry.start_sample, block_start)
                hi = min(entry.end_sample, block_end)
                if hi > lo:
                    outdata[lo - block_start:hi - block_start] += entry.samples[
                        lo - entry.start_sample:hi - entry.start_sample
                    ]
                if entry.end_sample <= block_end:
                    finished.append(entry)

            for entry in finished:
                self._entries.remove(entry)
            self._position = block_end

        np.clip(outdata, -1.0, 1.0, out=outdata)

        for entry in finished:
            _post(self._loop, self._deliver_ended, entry)

    # Event loop thread
    @staticmethod
    def _deliver_ended(entry: _Scheduled) -> None:
        if not entry.stopped:
            entry.on_ended()


# ---------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------

def _stop_and_close(stream: Any) -> None:
    try:
        stream.stop()
    finally:
        stream.close()


class SoundDeviceProvider:
    """
    DeviceProvider backed by the system's PortAudio devices.

    input_device / output_device accept anything sounddevice accepts
    (index or name substring); None selects the system default.
    """

    def __init__(
        self,
        *,
        input_device: int | str | None = None,
        output_device: int | str | None = None,
    ) -> None:
        self._input_device = input_device
        self._output_device = output_device

    async def acquire_microphone(
        self,
        *,
        sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ,
        frame_samples: int = CAPTURE_FRAME_SAMPLES,
    ) -> SoundDeviceMicrophone:
        loop = asyncio.get_running_loop()
        mic = SoundDeviceMicrophone(loop=loop)

        def _open() -> sounddevice.InputStream:
            sounddevice.check_input_settings(
                device=self._input_device,
                channels=INPUT_CHANNELS,
                dtype="float32",
                samplerate=sample_rate_hz,
            )
            stream = sounddevice.InputStream(
                device=self._input_device,
                samplerate=sample_rate_hz,
                blocksize=frame_samples,
                channels=INPUT_CHANNELS,
                dtype="float32",
                callback=mic.callback,
            )
            try:
                stream.start()
            except Exception:
                stream.close()
                raise
            return stream

        try:
            stream = await asyncio.to_thread(_open)
        except sounddevice.PortAudioError as e:
            raise classify_device_error(e) from e
        except ValueError as e:
            # sounddevice raises ValueError when no matching device exists
            raise DeviceUnavailable(str(e)) from e

        mic.attach(stream)
        log_event({
            "event_type": "MIC_ACQUIRED",
            "sample_rate": sample_rate_hz,
            "frame_samples": frame_samples,
        })
        return mic

    async def open_output(
        self,
        *,
        sample_rate_hz: int = OUTPUT_SAMPLE_RATE_HZ,
    ) -> SoundDeviceOutput:
        loop = asyncio.get_running_loop()
        output = SoundDeviceOutput(loop=loop, sample_rate_hz=sample_rate_hz)

        def _open() -> sounddevice.OutputStream:
            stream = sounddevice.OutputStream(
                device=self._output_device,
                samplerate=sample_rate_hz,
                blocksize=OUTPUT_BLOCK_SAMPLES,
                channels=OUTPUT_CHANNELS,
                dtype="float32",
                callback=output.callback,
            )
            try:
                stream.start()
            except Exception:
                stream.close()
                raise
            return stream

        try:
            stream = await asyncio.to_thread(_open)
        except (sounddevice.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(str(e)) from e

        output.attach(stream)
        log_event({"event_type": "OUTPUT_OPENED", "sample_rate": sample_rate_hz})
        return output
