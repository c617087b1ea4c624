# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Sequence

import numpy as np
import pytest

from adapters.live.base import ClosedFn, LiveConnector, LiveSession, MessageFn
from audio.frames import DecodedChunk
from config import AppConfig
from protocol.live import LiveSetup, ToolResponse
from session.callbacks import SessionCallbacks


# ---------------------------------------------------------------------
# Audio devices
# ---------------------------------------------------------------------

class FakeMic:
    def __init__(self) -> None:
        self.on_frame: Callable[[np.ndarray], Any] | None = None
        self.start_calls = 0
        self.stop_calls = 0
        self.closed = False

    def start(self, on_frame: Callable[[np.ndarray], Any]) -> None:
        self.start_calls += 1
        self.on_frame = on_frame

    def stop(self) -> None:
        self.stop_calls += 1
        self.on_frame = None

    async def close(self) -> None:
        self.closed = True

    def emit(self, samples: np.ndarray) -> None:
        if self.on_frame is not None:
            self.on_frame(samples)


class FakeOutput:
    """PlaybackSink with a hand-driven clock."""

    def __init__(self) -> None:
        self.clock = 0.0
        self.scheduled: list[dict[str, Any]] = []
        self.stopped: list[dict[str, Any]] = []
        self.closed = False

    def now(self) -> float:
        return self.clock

    def schedule_at(
        self,
        start_time: float,
        chunk: DecodedChunk,
        on_ended: Callable[[], None],
    ) -> Callable[[], None]:
        entry = {"start": start_time, "chunk": chunk, "on_ended": on_ended}
        self.scheduled.append(entry)

        def stop() -> None:
            self.stopped.append(entry)

        return stop

    async def close(self) -> None:
        self.closed = True


class FakeDevices:
    def __init__(self, *, mic_error: Exception | None = None) -> None:
        self.mic = FakeMic()
        self.output = FakeOutput()
        self.mic_error = mic_error
        self.mic_requests: list[dict[str, int]] = []

    async def acquire_microphone(self, *, sample_rate_hz: int, frame_samples: int) -> FakeMic:
        self.mic_requests.append(
            {"sample_rate_hz": sample_rate_hz, "frame_samples": frame_samples}
        )
        if self.mic_error is not None:
            raise self.mic_error
        return self.mic

    async def open_output(self, *, sample_rate_hz: int) -> FakeOutput:
        return self.output


# ---------------------------------------------------------------------
# Live transport
# ---------------------------------------------------------------------

class FakeLive(LiveSession):
    def __init__(self) -> None:
        self.sent_audio: list[bytes] = []
        self.sent_tools: list[list[ToolResponse]] = []
        self.send_error: Exception | None = None
        self.close_calls = 0

    async def send_audio_frame(self, pcm_bytes: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent_audio.append(pcm_bytes)

    async def send_tool_response(self, responses: Sequence[ToolResponse]) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent_tools.append(list(responses))

    async def close(self) -> None:
        self.close_calls += 1

    @property
    def closed(self) -> bool:
        return self.close_calls > 0


class FakeConnector(LiveConnector):
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.live = FakeLive()
        self.setups: list[LiveSetup] = []
        self.on_message: MessageFn | None = None
        self.on_closed: ClosedFn | None = None

    async def connect(
        self,
        *,
        setup: LiveSetup,
        on_message: MessageFn,
        on_closed: ClosedFn,
    ) -> FakeLive:
        self.setups.append(setup)
        if self.error is not None:
            raise self.error
        self.on_message = on_message
        self.on_closed = on_closed
        return self.live


# ---------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------

END_OF_STREAM = object()
SETUP_COMPLETE = '{"setupComplete": {}}'


class FakeWebSocket:
    """Stands in for websockets.asyncio.client.ClientConnection."""

    def __init__(self, inbound: list[Any] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.send_error: Exception | None = None
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        for item in inbound or []:
            self.push(item)

    def push(self, item: Any) -> None:
        self._inbound.put_nowait(item)

    async def send(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(json.loads(data))

    async def recv(self) -> Any:
        return await self._next()

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._next()
        if item is END_OF_STREAM:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.push(END_OF_STREAM)

    async def _next(self) -> Any:
        item = await self._inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item


# ---------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------

class CallbackRecorder:
    def __init__(self) -> None:
        self.events: list[tuple[Any, ...]] = []

    def callbacks(self) -> SessionCallbacks:
        return SessionCallbacks(
            on_open=lambda: self.events.append(("open",)),
            on_close=lambda reason: self.events.append(("close", reason)),
            on_error=lambda exc: self.events.append(("error", exc)),
            on_audio_level=lambda level: self.events.append(("level", level)),
            on_mode_change=lambda mode: self.events.append(("mode", mode)),
        )

    def of(self, kind: str) -> list[tuple[Any, ...]]:
        return [e for e in self.events if e[0] == kind]


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def devices() -> FakeDevices:
    return FakeDevices()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def live_setup() -> LiveSetup:
    return LiveSetup(
        model="test-model",
        voice_name="Fenrir",
        system_instruction="be brief",
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        env="test",
        log_level="INFO",
        gemini_api_key="test-key",
        live_model="test-model",
        live_voice="Fenrir",
        system_instruction_file=None,
        handshake_timeout_s=1.0,
        input_device=None,
        output_device=None,
        enable_json_logs=True,
        host="127.0.0.1",
        port=8000,
    )


@pytest.fixture
def make_chunk() -> Callable[..., DecodedChunk]:
    def _make(seconds: float, *, rate: int = 24_000, channels: int = 1) -> DecodedChunk:
        frames = int(round(seconds * rate))
        return DecodedChunk(
            samples=np.zeros((frames, channels), dtype=np.float32),
            sample_rate_hz=rate,
            channels=channels,
        )

    return _make
