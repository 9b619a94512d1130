"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import UPSTREAM_TIMEOUT_S


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup (server app factory or CLI entry)
    and passed downward to the gateway and provider adapters.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str
    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Provider
    # ------------------------------------------------------------------

    gemini_api_key: str | None
    chat_model: str
    tts_model: str
    live_model: str
    voice_name: str

    # ------------------------------------------------------------------
    # Upstream behavior
    # ------------------------------------------------------------------

    upstream_timeout_s: float = UPSTREAM_TIMEOUT_S

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        The API key is looked up under GEMINI_API_KEY first, then the
        API_KEY / GOOGLE_API_KEY names other Gemini tooling uses.
        """
        api_key = (
            os.environ.get("GEMINI_API_KEY")
            or os.environ.get("API_KEY")
            or os.environ.get("GOOGLE_API_KEY")
        )

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            gemini_api_key=api_key,
            chat_model=os.environ.get("GEMINI_CHAT_MODEL", "gemini-2.5-flash"),
            tts_model=os.environ.get("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
            live_model=os.environ.get(
                "GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025"
            ),
            voice_name=os.environ.get("TUTOR_VOICE", "Kore"),

            upstream_timeout_s=float(
                os.environ.get("UPSTREAM_TIMEOUT_S", str(UPSTREAM_TIMEOUT_S))
            ),
        )

    def require_api_key(self) -> str:
        """Return the Gemini API key or raise if it is not configured."""
        if not self.gemini_api_key:
            raise RuntimeError("GEMINI_API_KEY environment variable not set")
        return self.gemini_api_key
