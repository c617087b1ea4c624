"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object
- Build the LiveSetup handed to the session orchestrator

Non-responsibilities:
- No orchestration logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from adapters.live.prompts import SET_ASSISTANT_MODE_TOOL, SYSTEM_INSTRUCTION_V1
from constants import LIVE_HANDSHAKE_TIMEOUT_S, LIVE_MODEL_DEFAULT, LIVE_VOICE_DEFAULT
from protocol.live import LiveSetup


def _optional_device(raw: str | None) -> int | str | None:
    """PortAudio device by index when numeric, by name otherwise."""
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    return int(raw) if raw.isdigit() else raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the HUD bridge and the session orchestrator.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Live endpoint
    # ------------------------------------------------------------------

    gemini_api_key: str | None
    live_model: str
    live_voice: str
    system_instruction_file: str | None
    handshake_timeout_s: float

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    input_device: int | str | None
    output_device: int | str | None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # HUD bridge
    # ------------------------------------------------------------------

    host: str
    port: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            gemini_api_key=os.environ.get("GEMINI_API_KEY"),
            live_model=os.environ.get("LIVE_MODEL", LIVE_MODEL_DEFAULT),
            live_voice=os.environ.get("LIVE_VOICE", LIVE_VOICE_DEFAULT),
            system_instruction_file=os.environ.get("SYSTEM_INSTRUCTION_FILE") or None,
            handshake_timeout_s=float(
                os.environ.get("LIVE_HANDSHAKE_TIMEOUT_S", LIVE_HANDSHAKE_TIMEOUT_S)
            ),

            input_device=_optional_device(os.environ.get("INPUT_DEVICE")),
            output_device=_optional_device(os.environ.get("OUTPUT_DEVICE")),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            host=os.environ.get("HOST", "127.0.0.1"),
            port=int(os.environ.get("PORT", "8000")),
        )

    def system_instruction(self) -> str:
        """Instruction text, read from SYSTEM_INSTRUCTION_FILE when set."""
        if self.system_instruction_file:
            return Path(self.system_instruction_file).read_text(encoding="utf-8")
        return SYSTEM_INSTRUCTION_V1

    def live_setup(self) -> LiveSetup:
        """Setup payload for every live session opened by this process."""
        return LiveSetup(
            model=self.live_model,
            voice_name=self.live_voice,
            system_instruction=self.system_instruction(),
            function_declarations=(SET_ASSISTANT_MODE_TOOL,),
        )
