"""
Session orchestrator: one live audio session, end to end.

Responsibilities:
- Own the session lifecycle  IDLE -> CONNECTING -> OPEN -> CLOSED (+ FAILED)
- Acquire and release the device contexts and the live session
- Dispatch inbound messages (tool calls, audio, interruption) in order
- Serialize outbound traffic (mic frames, tool acknowledgements)
- Surface errors through the callback surface

Non-responsibilities:
- No WebSocket framing (adapters.live)
- No PCM math (audio.pcm)
- No HUD rendering
- No reconnect policy: after FAILED the caller decides
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Union

from adapters.live.base import LiveConnector, LiveSession
from audio.capture import AudioCapturePath
from audio.device_base import DeviceProvider
from audio.pcm import DecodeError, decode_b64_chunk
from audio.playback import PlaybackScheduler
from constants import (
    CAPTURE_FRAME_SAMPLES,
    OUTPUT_CHANNELS,
    WS_CLOSE_NORMAL,
)
from observability.logger import log_event
from observability.metrics import emit_gauge, timed
from orchestrator.enums.mode import AssistantMode
from orchestrator.enums.state import SessionState
from orchestrator.mode_protocol import ModeProtocolHandler
from protocol.live import LiveServerMessage, LiveSetup, ToolResponse
from session.callbacks import SessionCallbacks
from session.errors import SessionConnectionError
from session.voice_session import VoiceSession


# ---------------------------------------------------------------------
# Outbound channel items
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class _AudioOut:
    pcm_bytes: bytes


@dataclass(frozen=True)
class _ToolAckOut:
    responses: tuple[ToolResponse, ...]


_Outbound = Union[_AudioOut, _ToolAckOut]


class SessionOrchestrator:
    """
    Client-side orchestrator for exactly one live session at a time.

    All dependencies are injected, so tests run without audio devices or
    network access.

    Guarantees:
    - Inbound messages are handled one at a time in arrival order
    - Mic frames are sent in capture order; tool acknowledgements in
      submission order (no ordering between the two)
    - Every acquired resource is released on every exit path
    """

    def __init__(
        self,
        *,
        devices: DeviceProvider,
        connector: LiveConnector,
        setup: LiveSetup,
        callbacks: SessionCallbacks | None = None,
    ) -> None:
        self._devices = devices
        self._connector = connector
        self._setup = setup
        self._callbacks = callbacks or SessionCallbacks()

        self.session = VoiceSession()
        self._modes = ModeProtocolHandler(on_mode_change=self._notify_mode_change)

        self._scheduler: PlaybackScheduler | None = None
        self._capture: AudioCapturePath | None = None
        self._outbound: asyncio.Queue[_Outbound] | None = None
        self._sender_task: asyncio.Task[None] | None = None
        self._resources: AsyncExitStack | None = None

        self._connect_task: asyncio.Task[object] | None = None
        self._connect_done: asyncio.Event | None = None
        self._teardown: asyncio.Future[None] | None = None
        self._accepting = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self.session.state

    @property
    def mode(self) -> AssistantMode:
        """Current assistant mode."""
        return self._modes.mode

    @property
    def scheduler(self) -> PlaybackScheduler | None:
        """Playback scheduler of the open session, if any."""
        return self._scheduler

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open devices and the live session, then start capture.

        Allowed from IDLE or CLOSED.

        Raises:
            RuntimeError: called in any other state.
            PermissionDenied / DeviceUnavailable: microphone acquisition.
            SessionConnectionError: transport or handshake failure.
        Every failure moves the session to FAILED and is also reported
        through on_error.
        """
        if self.session.state not in (SessionState.IDLE, SessionState.CLOSED):
            raise RuntimeError(f"cannot connect from {self.session.state.value}")

        self.session = VoiceSession()
        self._modes.reset()
        self._modes.session_id = self.session.session_id
        self._connect_task = asyncio.current_task()
        self._connect_done = asyncio.Event()
        self._resources = AsyncExitStack()
        self._set_state(SessionState.CONNECTING)

        try:
            live = await self._acquire()
        except asyncio.CancelledError:
            # disconnect() during CONNECTING
            await self._teardown_to(SessionState.CLOSED)
            raise
        except Exception as exc:
            await self._teardown_to(SessionState.FAILED, error=exc)
            raise
        finally:
            self._connect_task = None
            self._connect_done.set()

        self.session.live = live
        self._outbound = asyncio.Queue()
        self._sender_task = asyncio.create_task(self._send_loop(live, self._outbound))
        self._resources.push_async_callback(self._stop_sender)

        self._accepting = True
        self._set_state(SessionState.OPEN)
        self._callbacks.fire("on_open")

        if self._capture is None:
            raise RuntimeError("capture path missing after acquisition")
        self._capture.start()

    async def disconnect(self) -> None:
        """
        Stop playback and capture, release all devices, close the session.

        Idempotent. No-op from IDLE. From OPEN or FAILED ends in CLOSED.
        Suspends until every device context is released.
        """
        if self.session.state is SessionState.CONNECTING and self._connect_task is not None:
            if self._connect_done is None:
                raise RuntimeError("connect in progress without a completion event")
            self._connect_task.cancel()
            await self._connect_done.wait()

        if self._teardown is not None:
            await asyncio.shield(self._teardown)

        if self.session.state in (SessionState.IDLE, SessionState.CLOSED):
            return

        close_reason = (
            "client_disconnect" if self.session.state is SessionState.OPEN else None
        )
        self._teardown = asyncio.ensure_future(
            self._teardown_to(SessionState.CLOSED, close_reason=close_reason)
        )
        await asyncio.shield(self._teardown)

    async def flush_outbound(self) -> None:
        """Wait until every queued outbound message has been sent."""
        if self._outbound is not None:
            await self._outbound.join()

    # ------------------------------------------------------------------
    # Acquisition / release
    # ------------------------------------------------------------------

    async def _acquire(self) -> LiveSession:
        stack = self._resources
        if stack is None:
            raise RuntimeError("acquire called outside connect")

        output = await self._devices.open_output(
            sample_rate_hz=self.session.output_sample_rate_hz,
        )
        stack.push_async_callback(output.close)
        self._scheduler = PlaybackScheduler(sink=output)

        mic = await self._devices.acquire_microphone(
            sample_rate_hz=self.session.input_sample_rate_hz,
            frame_samples=CAPTURE_FRAME_SAMPLES,
        )
        stack.push_async_callback(mic.close)
        self._capture = AudioCapturePath(
            source=mic,
            send_frame=self._submit_audio_frame,
            on_level=self._notify_audio_level,
        )
        stack.callback(self._capture.stop)

        with timed("live_handshake", session_id=self.session.session_id):
            live = await self._connector.connect(
                setup=self._setup,
                on_message=self._on_live_message,
                on_closed=self._on_live_closed,
            )
        stack.push_async_callback(live.close)
        return live

    async def _release(self) -> None:
        """
        Release everything acquired so far, in reverse order:
        sender, live session, capture tap, microphone, output context.
        Playback is interrupted first.
        """
        self._accepting = False

        if self._scheduler is not None:
            self._scheduler.interrupt()

        stack, self._resources = self._resources, None
        try:
            if stack is not None:
                with timed("device_release", session_id=self.session.session_id):
                    await stack.aclose()
        finally:
            self._scheduler = None
            self._capture = None
            self._outbound = None
            self._sender_task = None
            self.session.live = None

    async def _teardown_to(
        self,
        final_state: SessionState,
        *,
        error: Exception | None = None,
        close_reason: str | None = None,
    ) -> None:
        if error is not None:
            self._set_state(SessionState.FAILED)
            log_event({
                "event_type": "SESSION_FAILED",
                **self.session.log_context(),
                "exception": type(error).__name__,
                "message": str(error),
            })

        try:
            await self._release()
        finally:
            self._set_state(final_state)
            self._modes.reset()
            self._teardown = None
            log_event({"event_type": "SESSION_ENDED", **self.session.snapshot()})
            if error is not None:
                self._callbacks.fire("on_error", error)
            if close_reason is not None:
                self._callbacks.fire("on_close", close_reason)

    def _schedule_teardown(
        self,
        final_state: SessionState,
        *,
        error: Exception | None = None,
        close_reason: str | None = None,
    ) -> None:
        """Begin teardown from a callback context that cannot await."""
        if self._teardown is not None or not self._accepting:
            return
        self._accepting = False
        self._teardown = asyncio.ensure_future(
            self._teardown_to(final_state, error=error, close_reason=close_reason)
        )

    async def _stop_sender(self) -> None:
        task = self._sender_task
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _submit_audio_frame(self, pcm_bytes: bytes) -> None:
        if self._accepting and self._outbound is not None:
            self._outbound.put_nowait(_AudioOut(pcm_bytes))

    def _submit_tool_acks(self, responses: list[ToolResponse]) -> None:
        if self._accepting and self._outbound is not None and responses:
            self._outbound.put_nowait(_ToolAckOut(tuple(responses)))

    async def _send_loop(
        self,
        live: LiveSession,
        queue: asyncio.Queue[_Outbound],
    ) -> None:
        while True:
            item = await queue.get()
            try:
                if isinstance(item, _AudioOut):
                    await live.send_audio_frame(item.pcm_bytes)
                    self.session.frames_sent += 1
                else:
                    await live.send_tool_response(item.responses)
                    log_event({
                        "event_type": "TOOL_RESPONSE_SENT",
                        **self.session.log_context(),
                        "call_ids": [r.call_id for r in item.responses],
                    })
            except SessionConnectionError as exc:
                queue.task_done()
                _drain(queue)
                self._schedule_teardown(SessionState.FAILED, error=exc)
                return
            queue.task_done()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_live_message(self, message: LiveServerMessage) -> None:
        if not self._accepting:
            return
        try:
            self._dispatch(message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._schedule_teardown(SessionState.FAILED, error=exc)

    def _dispatch(self, message: LiveServerMessage) -> None:
        """
        Handle one inbound message. The three payloads are independent
        and all of them are checked: tool calls, then audio, then
        interruption.
        """
        scheduler = self._scheduler
        if scheduler is None:
            raise RuntimeError("inbound message with no playback scheduler")

        if message.tool_calls:
            self._submit_tool_acks(self._modes.handle_batch(message.tool_calls))

        for data in message.audio_chunks:
            try:
                chunk = decode_b64_chunk(
                    data,
                    sample_rate_hz=self.session.output_sample_rate_hz,
                    channels=OUTPUT_CHANNELS,
                )
            except DecodeError as e:
                self.session.chunks_dropped += 1
                log_event({
                    "event_type": "AUDIO_CHUNK_DROPPED",
                    **self.session.log_context(),
                    "error": str(e),
                    "payload_len": len(data),
                })
                continue

            scheduler.enqueue(chunk)
            self.session.chunks_played += 1

        if message.audio_chunks:
            emit_gauge(
                "playback_buffered_s",
                scheduler.buffered_s,
                session_id=self.session.session_id,
            )

        if message.interrupted:
            stopped = scheduler.interrupt()
            self.session.interrupts += 1
            log_event({
                "event_type": "PLAYBACK_INTERRUPTED",
                **self.session.log_context(),
                "handles_stopped": stopped,
            })

        if message.cancelled_tool_call_ids:
            log_event({
                "event_type": "TOOL_CALL_CANCELLED",
                **self.session.log_context(),
                "call_ids": list(message.cancelled_tool_call_ids),
            })

        if message.go_away_time_left is not None:
            log_event({
                "event_type": "LIVE_GO_AWAY",
                **self.session.log_context(),
                "time_left": message.go_away_time_left,
            })

    def _on_live_closed(self, code: int, reason: str) -> None:
        if code == WS_CLOSE_NORMAL:
            self._schedule_teardown(SessionState.CLOSED, close_reason=reason)
            return

        self._schedule_teardown(
            SessionState.FAILED,
            error=SessionConnectionError(
                f"endpoint closed the session ({code}): {reason}",
                close_code=code,
            ),
            close_reason=reason,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: SessionState) -> None:
        prev = self.session.state
        self.session.state = new_state
        if prev is not new_state:
            log_event({
                "event_type": "SESSION_STATE_CHANGED",
                "session_id": self.session.session_id,
                "from": prev.value,
                "to": new_state.value,
            })

    def _notify_audio_level(self, level: float) -> None:
        self._callbacks.fire("on_audio_level", level)

    def _notify_mode_change(self, mode: AssistantMode) -> None:
        self._callbacks.fire("on_mode_change", mode)


def _drain(queue: asyncio.Queue[_Outbound]) -> None:
    while not queue.empty():
        queue.get_nowait()
        queue.task_done()
