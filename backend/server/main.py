"""
Process entry point for the HUD bridge.

Loads .env, reads AppConfig and serves the app with uvicorn on
HOST:PORT. One process drives one local audio session.
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def run() -> None:
    """Serve server.asgi:app with settings from the environment."""
    load_dotenv()
    config = AppConfig.load_from_env()

    uvicorn.run(
        "server.asgi:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        reload=config.env == "dev",  # Dev mode only
    )


if __name__ == "__main__":
    run()
