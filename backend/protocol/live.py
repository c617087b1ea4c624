"""
JSON envelope helpers for the Gemini Live bidirectional stream.

Client -> Server:
    {"setup": {...}}                                   once, first message
    {"realtimeInput": {"audio": {"data", "mimeType"}}} one per mic frame
    {"toolResponse": {"functionResponses": [...]}}     one per tool batch

Server -> Client (any combination of fields per message):
    setupComplete
    toolCall.functionCalls[]            {id, name, args}
    serverContent.modelTurn.parts[]     inlineData {mimeType, data(base64)}
    serverContent.interrupted           barge-in
    serverContent.turnComplete
    toolCallCancellation.ids[]
    goAway.timeLeft

Usage example:

    message = parse_server_message(raw)
    for request in message.tool_calls:
        ...
    for data in message.audio_chunks:
        chunk = decode_b64_chunk(data, sample_rate_hz=24_000, channels=1)
    if message.interrupted:
        scheduler.interrupt()
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from audio.pcm import b64_encode
from constants import LIVE_INPUT_MIME_TYPE


# -------------------------
# Exceptions
# -------------------------

class LiveProtocolError(Exception):
    """
    Raised when an inbound frame is not a JSON object.

    The message is unusable and must be skipped.
    """


# -------------------------
# Data types
# -------------------------

@dataclass(frozen=True)
class LiveSetup:
    """
    Fixed session configuration sent in the setup envelope.

    All fields are configuration data; nothing here is interpreted
    by the client.
    """
    model: str
    voice_name: str
    system_instruction: str
    function_declarations: tuple[Mapping[str, Any], ...] = ()
    response_modalities: tuple[str, ...] = ("AUDIO",)


@dataclass(frozen=True)
class ToolCallRequest:
    """One entry of toolCall.functionCalls."""
    call_id: str
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResponse:
    """Acknowledgement for one ToolCallRequest, correlated by call_id."""
    call_id: str
    name: str
    response: Mapping[str, Any]


@dataclass(frozen=True)
class LiveServerMessage:
    """
    Parsed inbound message.

    Fields are independent: one message may carry tool calls,
    audio and an interruption at the same time.
    """
    setup_complete: bool = False
    tool_calls: tuple[ToolCallRequest, ...] = ()
    audio_chunks: tuple[str, ...] = ()
    interrupted: bool = False
    turn_complete: bool = False
    cancelled_tool_call_ids: tuple[str, ...] = ()
    go_away_time_left: str | None = None


# -------------------------
# Client -> Server
# -------------------------

def _model_resource(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


def build_setup_message(setup: LiveSetup) -> dict[str, Any]:
    """Build the BidiGenerateContentSetup envelope."""
    body: dict[str, Any] = {
        "model": _model_resource(setup.model),
        "generationConfig": {
            "responseModalities": list(setup.response_modalities),
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": setup.voice_name},
                },
            },
        },
    }

    if setup.system_instruction:
        body["systemInstruction"] = {
            "parts": [{"text": setup.system_instruction}],
        }

    if setup.function_declarations:
        body["tools"] = [
            {"functionDeclarations": [dict(d) for d in setup.function_declarations]},
        ]

    return {"setup": body}


def build_audio_message(
    pcm_bytes: bytes,
    *,
    mime_type: str = LIVE_INPUT_MIME_TYPE,
) -> dict[str, Any]:
    """Wrap one encoded microphone frame as realtime input."""
    return {
        "realtimeInput": {
            "audio": {
                "data": b64_encode(pcm_bytes),
                "mimeType": mime_type,
            },
        },
    }


def build_tool_response_message(
    responses: Sequence[ToolResponse],
) -> dict[str, Any]:
    """Wrap tool acknowledgements in a single toolResponse envelope."""
    return {
        "toolResponse": {
            "functionResponses": [
                {
                    "id": r.call_id,
                    "name": r.name,
                    "response": dict(r.response),
                }
                for r in responses
            ],
        },
    }


# -------------------------
# Server -> Client
# -------------------------

def _list_field(obj: Mapping[str, Any], key: str) -> list[Any]:
    value = obj.get(key)
    return value if isinstance(value, list) else []


def _parse_tool_calls(tool_call: Any) -> tuple[ToolCallRequest, ...]:
    if not isinstance(tool_call, Mapping):
        return ()

    out: list[ToolCallRequest] = []
    for fc in _list_field(tool_call, "functionCalls"):
        if not isinstance(fc, Mapping):
            continue
        args = fc.get("args")
        out.append(
            ToolCallRequest(
                call_id=str(fc.get("id", "")),
                name=str(fc.get("name", "")),
                args=args if isinstance(args, Mapping) else {},
            )
        )
    return tuple(out)


def _parse_audio_parts(server_content: Mapping[str, Any]) -> tuple[str, ...]:
    model_turn = server_content.get("modelTurn")
    if not isinstance(model_turn, Mapping):
        return ()

    out: list[str] = []
    for part in _list_field(model_turn, "parts"):
        if not isinstance(part, Mapping):
            continue
        inline = part.get("inlineData")
        if not isinstance(inline, Mapping):
            continue
        mime_type = str(inline.get("mimeType", "audio/pcm"))
        data = inline.get("data")
        if mime_type.startswith("audio/") and isinstance(data, str) and data:
            out.append(data)
    return tuple(out)


def parse_server_message(raw: str | bytes) -> LiveServerMessage:
    """
    Parse one inbound frame.

    The endpoint sends JSON as either text or binary frames.
    Unknown fields are ignored.

    Raises:
        LiveProtocolError: frame is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        raise LiveProtocolError(f"inbound frame is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise LiveProtocolError(
            f"inbound frame is {type(data).__name__}, expected object"
        )

    server_content = data.get("serverContent")
    if not isinstance(server_content, Mapping):
        server_content = {}

    cancellation = data.get("toolCallCancellation")
    cancelled_ids: tuple[str, ...] = ()
    if isinstance(cancellation, Mapping):
        cancelled_ids = tuple(str(i) for i in _list_field(cancellation, "ids"))

    go_away = data.get("goAway")
    time_left: str | None = None
    if isinstance(go_away, Mapping):
        time_left = str(go_away.get("timeLeft", ""))

    return LiveServerMessage(
        setup_complete="setupComplete" in data,
        tool_calls=_parse_tool_calls(data.get("toolCall")),
        audio_chunks=_parse_audio_parts(server_content),
        interrupted=bool(server_content.get("interrupted", False)),
        turn_complete=bool(server_content.get("turnComplete", False)),
        cancelled_tool_call_ids=cancelled_ids,
        go_away_time_left=time_left,
    )
