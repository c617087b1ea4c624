"""
FastAPI app factory for the HUD bridge.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (one SessionOrchestrator per process)
- Register routes
- Release devices on shutdown
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.live.base import LiveConnector
from adapters.live.gemini import GeminiLiveConnector
from audio.device_base import DeviceProvider
from config import AppConfig
from observability import logger
from server.hud import HudBroadcaster
from server.routes import register_routes
from session.orchestrator import SessionOrchestrator


def create_app(
    config: AppConfig | None = None,
    *,
    devices: DeviceProvider | None = None,
    connector: LiveConnector | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    devices / connector are injectable so tests run without PortAudio
    or network access.
    """
    config = config or AppConfig.load_from_env()
    logger.set_enabled(config.enable_json_logs)

    if connector is None:
        if not config.gemini_api_key:
            raise RuntimeError("GEMINI_API_KEY environment variable not set")
        connector = GeminiLiveConnector(
            api_key=config.gemini_api_key,
            handshake_timeout_s=config.handshake_timeout_s,
        )

    if devices is None:
        # PortAudio is loaded on import; only pay for it when really used.
        from audio.devices import SoundDeviceProvider  # pylint: disable=import-outside-toplevel
        devices = SoundDeviceProvider(
            input_device=config.input_device,
            output_device=config.output_device,
        )

    hud = HudBroadcaster()
    orchestrator = SessionOrchestrator(
        devices=devices,
        connector=connector,
        setup=config.live_setup(),
        callbacks=hud.callbacks(),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await orchestrator.disconnect()

    app = FastAPI(title="Live Assistant HUD Bridge", lifespan=lifespan)

    app.state.config = config
    app.state.hud = hud
    app.state.orchestrator = orchestrator

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
