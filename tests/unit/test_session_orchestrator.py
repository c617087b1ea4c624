# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import numpy as np
import pytest

import session.orchestrator as orchestrator_mod
from adapters.live.gemini import GeminiLiveConnector
from audio.pcm import b64_encode, encode_pcm16
from constants import CAPTURE_FRAME_SAMPLES
from orchestrator.enums.mode import AssistantMode
from orchestrator.enums.state import SessionState
from protocol.live import LiveServerMessage, ToolCallRequest
from session.errors import DeviceUnavailable, PermissionDenied, SessionConnectionError
from session.orchestrator import SessionOrchestrator

from conftest import SETUP_COMPLETE, FakeConnector, FakeDevices, FakeWebSocket


HALF_SECOND_B64 = b64_encode(b"\x00\x00" * 12_000)


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def make_orchestrator(devices, connector, live_setup, recorder) -> SessionOrchestrator:
    return SessionOrchestrator(
        devices=devices,
        connector=connector,
        setup=live_setup,
        callbacks=recorder.callbacks(),
    )


def mode_call(call_id: str, mode: str) -> ToolCallRequest:
    return ToolCallRequest(call_id=call_id, name="setAssistantMode", args={"mode": mode})


# ---------------------------------------------------------------------
# connect
# ---------------------------------------------------------------------

def test_connect_opens_session_and_starts_capture(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        assert orch.state is SessionState.IDLE

        await orch.connect()

        assert orch.state is SessionState.OPEN
        assert orch.mode is AssistantMode.GENERAL
        assert recorder.events == [("open",)]
        assert connector.setups == [live_setup]
        assert devices.mic_requests == [{"sample_rate_hz": 16_000, "frame_samples": 4096}]
        assert devices.mic.on_frame is not None

        await orch.disconnect()

    asyncio.run(scenario())


def test_connect_while_open_is_rejected(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        with pytest.raises(RuntimeError):
            await orch.connect()

        assert orch.state is SessionState.OPEN
        await orch.disconnect()

    asyncio.run(scenario())


def test_permission_denied_fails_session_and_releases_output(connector, live_setup, recorder):
    devices = FakeDevices(mic_error=PermissionDenied("microphone access denied"))

    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)

        with pytest.raises(PermissionDenied):
            await orch.connect()

        assert orch.state is SessionState.FAILED
        assert devices.output.closed
        assert connector.setups == []
        errors = recorder.of("error")
        assert len(errors) == 1 and isinstance(errors[0][1], PermissionDenied)

        await orch.disconnect()
        assert orch.state is SessionState.CLOSED

    asyncio.run(scenario())


def test_missing_device_fails_session(connector, live_setup, recorder):
    devices = FakeDevices(mic_error=DeviceUnavailable("no input device"))

    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        with pytest.raises(DeviceUnavailable):
            await orch.connect()
        assert orch.state is SessionState.FAILED

    asyncio.run(scenario())


def test_handshake_failure_releases_devices(devices, live_setup, recorder):
    connector = FakeConnector(error=SessionConnectionError("handshake refused"))

    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)

        with pytest.raises(SessionConnectionError):
            await orch.connect()

        assert orch.state is SessionState.FAILED
        assert devices.mic.closed
        assert devices.output.closed
        assert recorder.of("open") == []
        assert isinstance(recorder.of("error")[0][1], SessionConnectionError)

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------

def test_mic_frames_sent_in_capture_order_with_levels(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        frames = [
            np.zeros(CAPTURE_FRAME_SAMPLES, dtype=np.float32),
            np.full(CAPTURE_FRAME_SAMPLES, 0.25, dtype=np.float32),
        ]
        for frame in frames:
            devices.mic.emit(frame)
        await orch.flush_outbound()

        assert connector.live.sent_audio == [encode_pcm16(f) for f in frames]
        assert [e[1] for e in recorder.of("level")] == [0.0, pytest.approx(25.0)]
        assert orch.session.frames_sent == 2

        await orch.disconnect()

    asyncio.run(scenario())


def test_send_failure_fails_session(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.live.send_error = SessionConnectionError("socket gone", close_code=1006)
        devices.mic.emit(np.zeros(CAPTURE_FRAME_SAMPLES, dtype=np.float32))
        await settle()

        assert orch.state is SessionState.FAILED
        assert isinstance(recorder.of("error")[0][1], SessionConnectionError)
        assert devices.mic.closed
        assert connector.live.closed

        await orch.disconnect()
        assert orch.state is SessionState.CLOSED

    asyncio.run(scenario())


def test_interleaved_frames_and_acks_keep_their_own_order(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        modes = ["HOMEWORK", "SCIENCE", "GK_QUIZ", "GENERAL"]
        frames = [
            np.full(CAPTURE_FRAME_SAMPLES, i / 8, dtype=np.float32)
            for i in range(len(modes))
        ]
        for i, (frame, mode) in enumerate(zip(frames, modes)):
            devices.mic.emit(frame)
            connector.on_message(LiveServerMessage(tool_calls=(mode_call(f"c{i}", mode),)))
        await orch.flush_outbound()

        assert connector.live.sent_audio == [encode_pcm16(f) for f in frames]
        acks = [batch[0] for batch in connector.live.sent_tools]
        assert [a.call_id for a in acks] == ["c0", "c1", "c2", "c3"]
        assert [a.response["result"] for a in acks] == [f"Mode set to {m}" for m in modes]
        assert orch.mode is AssistantMode.GENERAL

        await orch.disconnect()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Inbound dispatch
# ---------------------------------------------------------------------

def test_mode_batch_notifies_once_and_acknowledges_once(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(
            tool_calls=(mode_call("c1", "HOMEWORK"), mode_call("c2", "BOGUS")),
        ))
        await orch.flush_outbound()

        assert recorder.of("mode") == [("mode", AssistantMode.HOMEWORK)]
        assert orch.mode is AssistantMode.HOMEWORK
        assert len(connector.live.sent_tools) == 1
        (ack,) = connector.live.sent_tools[0]
        assert ack.call_id == "c1"
        assert ack.response == {"result": "Mode set to HOMEWORK"}

        await orch.disconnect()

    asyncio.run(scenario())


def test_unknown_tool_gets_no_acknowledgement(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(
            tool_calls=(ToolCallRequest(call_id="x", name="openDoors", args={}),),
        ))
        await orch.flush_outbound()

        assert connector.live.sent_tools == []
        assert recorder.of("mode") == []

        await orch.disconnect()

    asyncio.run(scenario())


def test_audio_chunks_play_back_to_back(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(audio_chunks=(HALF_SECOND_B64,)))
        connector.on_message(LiveServerMessage(audio_chunks=(HALF_SECOND_B64,)))

        starts = [e["start"] for e in devices.output.scheduled]
        assert starts == [0.0, pytest.approx(0.5)]
        assert orch.session.chunks_played == 2

        await orch.disconnect()

    asyncio.run(scenario())


def test_undecodable_chunk_is_dropped_and_session_continues(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(
            audio_chunks=("%%% not base64 %%%", b64_encode(b"\x00"), HALF_SECOND_B64),
        ))

        assert len(devices.output.scheduled) == 1
        assert orch.session.chunks_dropped == 2
        assert orch.state is SessionState.OPEN
        assert recorder.of("error") == []

        await orch.disconnect()

    asyncio.run(scenario())


def test_interrupted_flag_stops_playback_and_resets_clock(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(audio_chunks=(HALF_SECOND_B64, HALF_SECOND_B64)))
        devices.output.clock = 0.2
        connector.on_message(LiveServerMessage(interrupted=True))

        assert len(devices.output.stopped) == 2
        assert orch.scheduler is not None
        assert orch.scheduler.next_start_time == 0.0
        assert orch.scheduler.live_handles == frozenset()

        connector.on_message(LiveServerMessage(audio_chunks=(HALF_SECOND_B64,)))
        assert devices.output.scheduled[-1]["start"] == pytest.approx(0.2)

        await orch.disconnect()

    asyncio.run(scenario())


def test_one_message_handles_tool_call_then_audio_then_interrupt(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_message(LiveServerMessage(
            tool_calls=(mode_call("c1", "SCIENCE"),),
            audio_chunks=(HALF_SECOND_B64,),
            interrupted=True,
        ))
        await orch.flush_outbound()

        assert orch.mode is AssistantMode.SCIENCE
        assert len(connector.live.sent_tools) == 1
        # audio was scheduled, then cut by the interrupt in the same message
        assert len(devices.output.scheduled) == 1
        assert len(devices.output.stopped) == 1

        await orch.disconnect()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# disconnect / remote close
# ---------------------------------------------------------------------

def test_disconnect_is_idempotent_and_releases_everything(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()
        connector.on_message(LiveServerMessage(
            tool_calls=(mode_call("c1", "GK_QUIZ"),),
            audio_chunks=(HALF_SECOND_B64,),
        ))

        await orch.disconnect()
        await orch.disconnect()

        assert orch.state is SessionState.CLOSED
        assert orch.mode is AssistantMode.GENERAL
        assert devices.mic.on_frame is None
        assert devices.mic.closed
        assert devices.output.closed
        assert connector.live.close_calls == 1
        assert len(devices.output.stopped) == 1
        assert recorder.of("close") == [("close", "client_disconnect")]

    asyncio.run(scenario())


def test_disconnect_from_idle_is_noop(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.disconnect()
        assert orch.state is SessionState.IDLE
        assert recorder.events == []

    asyncio.run(scenario())


def test_dispatch_without_open_session_raises(devices, connector, live_setup, recorder):
    orch = make_orchestrator(devices, connector, live_setup, recorder)
    with pytest.raises(RuntimeError):
        orch._dispatch(LiveServerMessage())  # pylint: disable=protected-access


def test_messages_after_disconnect_are_ignored(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()
        await orch.disconnect()

        connector.on_message(LiveServerMessage(
            tool_calls=(mode_call("late", "HOMEWORK"),),
            audio_chunks=(HALF_SECOND_B64,),
        ))

        assert devices.output.scheduled == []
        assert recorder.of("mode") == []

    asyncio.run(scenario())


def test_reconnect_after_disconnect(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()
        first_id = orch.session.session_id
        await orch.disconnect()

        await orch.connect()

        assert orch.state is SessionState.OPEN
        assert orch.session.session_id != first_id
        await orch.disconnect()

    asyncio.run(scenario())


def test_remote_normal_close_ends_closed(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_closed(1000, "bye")
        await settle()

        assert orch.state is SessionState.CLOSED
        assert recorder.of("close") == [("close", "bye")]
        assert recorder.of("error") == []
        assert devices.mic.closed
        assert devices.output.closed

    asyncio.run(scenario())


def test_remote_abnormal_close_fails_session(devices, connector, live_setup, recorder):
    async def scenario() -> None:
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        connector.on_closed(1011, "internal error")
        await settle()

        assert orch.state is SessionState.FAILED
        (error,) = recorder.of("error")
        assert isinstance(error[1], SessionConnectionError)
        assert error[1].close_code == 1011
        assert recorder.of("close") == [("close", "internal error")]
        # error is reported before close
        kinds = [e[0] for e in recorder.events]
        assert kinds.index("error") < kinds.index("close")
        assert devices.output.closed

    asyncio.run(scenario())


def test_transport_dying_without_close_frame_fails_session(devices, live_setup, recorder):
    async def scenario() -> None:
        ws = FakeWebSocket([SETUP_COMPLETE])

        async def fake_connect(url: str, **_: Any) -> FakeWebSocket:
            return ws

        connector = GeminiLiveConnector(api_key="k", connect_fn=fake_connect)
        orch = make_orchestrator(devices, connector, live_setup, recorder)
        await orch.connect()

        ws.push(RuntimeError("transport vanished"))
        await settle()
        await settle()

        assert orch.state is SessionState.FAILED
        (error,) = recorder.of("error")
        assert isinstance(error[1], SessionConnectionError)
        assert error[1].close_code == 1006
        assert len(recorder.of("close")) == 1
        assert ws.closed
        assert devices.mic.closed
        assert devices.mic.on_frame is None
        assert devices.output.closed

    asyncio.run(scenario())


def test_disconnect_while_connecting_cancels_and_releases(devices, live_setup, recorder, monkeypatch):
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(orchestrator_mod, "log_event", emitted.append)

    async def scenario() -> None:
        gate = asyncio.Event()

        class SlowConnector(FakeConnector):
            async def connect(self, **kwargs):
                await gate.wait()
                return await super().connect(**kwargs)

        orch = make_orchestrator(devices, SlowConnector(), live_setup, recorder)
        connecting = asyncio.create_task(orch.connect())
        await settle()
        assert orch.state is SessionState.CONNECTING

        await orch.disconnect()

        assert orch.state is SessionState.CLOSED
        assert devices.mic.closed
        assert devices.output.closed
        assert recorder.of("open") == []
        assert orch.mode is AssistantMode.GENERAL
        with pytest.raises(asyncio.CancelledError):
            await connecting

        (ended,) = [e for e in emitted if e["event_type"] == "SESSION_ENDED"]
        assert ended["state"] == "CLOSED"

    asyncio.run(scenario())
