"""
Route registration for the HUD bridge.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Map session errors onto HTTP status codes
- Stream callback events to HUD WebSockets
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from observability.logger import log_event
from server.hud import HudBroadcaster
from session.errors import DeviceUnavailable, PermissionDenied, SessionConnectionError
from session.orchestrator import SessionOrchestrator


def session_view(orchestrator: SessionOrchestrator) -> dict[str, Any]:
    """Public JSON view of the current session."""
    return {
        **orchestrator.session.snapshot(),
        "mode": orchestrator.mode.value,
    }


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/session")
    async def get_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return session_view(app.state.orchestrator)

    @app.post("/session/connect")
    async def connect_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        orchestrator: SessionOrchestrator = app.state.orchestrator
        try:
            await orchestrator.connect()
        except RuntimeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except PermissionDenied as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except DeviceUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except SessionConnectionError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return session_view(orchestrator)

    @app.post("/session/disconnect")
    async def disconnect_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        orchestrator: SessionOrchestrator = app.state.orchestrator
        await orchestrator.disconnect()
        return session_view(orchestrator)

    @app.websocket("/hud")
    async def hud_stream(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        hud: HudBroadcaster = app.state.hud
        orchestrator: SessionOrchestrator = app.state.orchestrator
        sub = hud.subscribe()

        async def pump() -> None:
            await ws.send_json({"type": "snapshot", **session_view(orchestrator)})
            while True:
                await ws.send_json(await sub.next_event())

        pump_task = asyncio.create_task(pump())

        try:
            # HUD clients only listen; inbound frames are ignored.
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "HUD_WS_FATAL_ERROR",
                "session_id": orchestrator.session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            pump_task.cancel()
            hud.unsubscribe(sub)
            log_event({
                "event_type": "HUD_DISCONNECTED",
                "dropped_events": sub.dropped,
            })
