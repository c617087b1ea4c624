"""
Gemini Live WebSocket adapter.

Core model:
- One WebSocket per session, opened by GeminiLiveConnector.connect()
- connect() sends the setup envelope and waits for setupComplete before
  returning a GeminiLiveSession; no half-open session escapes
- A single reader task parses inbound frames and hands them to
  on_message in arrival order
- Sends are awaited directly; transport failures become
  SessionConnectionError

Design constraints:
- Adapter must not touch playback, capture or mode state.
- Adapter must not reconnect. Recovery belongs to the caller.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Sequence

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from adapters.live.base import ClosedFn, LiveConnector, LiveSession, MessageFn
from constants import (
    LIVE_HANDSHAKE_TIMEOUT_S,
    LIVE_WS_HOST,
    LIVE_WS_PATH,
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_NORMAL,
)
from observability.logger import log_event
from protocol.live import (
    LiveProtocolError,
    LiveSetup,
    ToolResponse,
    build_audio_message,
    build_setup_message,
    build_tool_response_message,
    parse_server_message,
)
from session.errors import SessionConnectionError


ConnectFn = Callable[..., Awaitable[Any]]


def build_live_url(api_key: str, *, host: str = LIVE_WS_HOST) -> str:
    """WebSocket URL for BidiGenerateContent."""
    return f"wss://{host}{LIVE_WS_PATH}?key={api_key}"


def _close_details(exc: ConnectionClosed) -> tuple[int, str]:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return WS_CLOSE_ABNORMAL, str(exc)
    return frame.code, frame.reason


class GeminiLiveSession(LiveSession):
    """
    Open session over an already-handshaken WebSocket.

    Public interface:
    - send_audio_frame(pcm_bytes)
    - send_tool_response(responses)
    - close()
    """

    def __init__(
        self,
        *,
        ws: Any,
        on_message: MessageFn,
        on_closed: ClosedFn,
    ) -> None:
        self._ws = ws
        self._on_message = on_message
        self._on_closed = on_closed
        self._recv_task: asyncio.Task[None] | None = None
        self._closing = False

    def start(self) -> None:
        """Start the reader task (connector use only)."""
        if self._recv_task is None:
            self._recv_task = asyncio.create_task(self._recv_loop())

    async def send_audio_frame(self, pcm_bytes: bytes) -> None:
        await self._send(build_audio_message(pcm_bytes))

    async def send_tool_response(self, responses: Sequence[ToolResponse]) -> None:
        await self._send(build_tool_response_message(responses))

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True

        try:
            await self._ws.close()
        except WebSocketException as e:
            log_event({
                "event_type": "LIVE_CLOSE_ERROR",
                "exception": type(e).__name__,
                "message": str(e),
            })

        task = self._recv_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._closing:
            raise SessionConnectionError("live session is closed")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            code, reason = _close_details(e)
            raise SessionConnectionError(
                f"send failed, connection closed ({code}): {reason}",
                close_code=code,
            ) from e
        except (WebSocketException, OSError) as e:
            raise SessionConnectionError(f"send failed: {e}") from e

    async def _recv_loop(self) -> None:
        code, reason = WS_CLOSE_NORMAL, ""
        try:
            async for raw in self._ws:
                try:
                    message = parse_server_message(raw)
                except LiveProtocolError as e:
                    log_event({
                        "event_type": "LIVE_MESSAGE_UNPARSEABLE",
                        "error": str(e),
                    })
                    continue
                self._on_message(message)
        except ConnectionClosed as e:
            code, reason = _close_details(e)
        except OSError as e:
            code, reason = WS_CLOSE_ABNORMAL, str(e)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "LIVE_READER_FATAL_ERROR",
                "exception": type(e).__name__,
                "message": str(e),
            })
            code, reason = WS_CLOSE_ABNORMAL, f"reader failed: {type(e).__name__}"
        else:
            code = self._ws.close_code or WS_CLOSE_NORMAL
            reason = self._ws.close_reason or ""

        if self._closing:
            return

        log_event({
            "event_type": "LIVE_REMOTE_CLOSED",
            "close_code": code,
            "reason": reason,
        })
        self._on_closed(code, reason)


class GeminiLiveConnector(LiveConnector):
    """
    Opens GeminiLiveSessions.

    connect_fn is injectable for tests; it defaults to
    websockets.asyncio.client.connect.
    """

    def __init__(
        self,
        *,
        api_key: str,
        host: str = LIVE_WS_HOST,
        handshake_timeout_s: float = LIVE_HANDSHAKE_TIMEOUT_S,
        connect_fn: ConnectFn = ws_connect,
    ) -> None:
        self._api_key = api_key
        self._host = host
        self._handshake_timeout_s = handshake_timeout_s
        self._connect_fn = connect_fn

    async def connect(
        self,
        *,
        setup: LiveSetup,
        on_message: MessageFn,
        on_closed: ClosedFn,
    ) -> GeminiLiveSession:
        url = build_live_url(self._api_key, host=self._host)

        try:
            ws = await asyncio.wait_for(
                self._connect_fn(url, max_size=None),
                timeout=self._handshake_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise SessionConnectionError("timed out opening live connection") from e
        except (WebSocketException, OSError) as e:
            raise SessionConnectionError(f"could not open live connection: {e}") from e

        try:
            await ws.send(json.dumps(build_setup_message(setup)))
            raw = await asyncio.wait_for(ws.recv(), timeout=self._handshake_timeout_s)
            first = parse_server_message(raw)
        except asyncio.CancelledError:
            await ws.close()
            raise
        except asyncio.TimeoutError as e:
            await ws.close()
            raise SessionConnectionError("timed out waiting for setupComplete") from e
        except ConnectionClosed as e:
            code, reason = _close_details(e)
            raise SessionConnectionError(
                f"endpoint closed during setup ({code}): {reason}",
                close_code=code,
            ) from e
        except (LiveProtocolError, WebSocketException, OSError) as e:
            await ws.close()
            raise SessionConnectionError(f"live handshake failed: {e}") from e

        if not first.setup_complete:
            await ws.close()
            raise SessionConnectionError("endpoint did not acknowledge setup")

        session = GeminiLiveSession(ws=ws, on_message=on_message, on_closed=on_closed)
        session.start()

        log_event({
            "event_type": "LIVE_SETUP_COMPLETE",
            "model": setup.model,
            "voice": setup.voice_name,
        })
        return session
