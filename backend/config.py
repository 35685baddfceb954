"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No call orchestration logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    CALLER_DEBOUNCE_MS,
    CRITIC_MODEL_DEFAULT,
    CRITIC_TIMEOUT_S,
    DATA_DIR_DEFAULT,
    HANDSHAKE_TIMEOUT_S,
    LESSON_RETENTION_CAP,
    LIVE_MODE_BETA,
    LIVE_MODEL_BETA,
    LIVE_MODEL_STABLE,
    LIVE_VOICE_DEFAULT,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the server, the call controller and the critic.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Live dialogue service
    # ------------------------------------------------------------------

    gemini_api_key: str | None
    live_mode: str
    live_model: str
    live_voice: str
    handshake_timeout_s: float

    # ------------------------------------------------------------------
    # Critic
    # ------------------------------------------------------------------

    critic_provider: str
    critic_model: str
    critic_timeout_s: float
    openai_api_key: str | None
    anthropic_api_key: str | None
    groq_api_key: str | None

    # ------------------------------------------------------------------
    # Transcript / lessons
    # ------------------------------------------------------------------

    transcript_debounce_ms: int
    lesson_retention_cap: int
    data_dir: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    @property
    def learning_enabled(self) -> bool:
        """Transcription, critique and lesson injection only run in beta mode."""
        return self.live_mode == LIVE_MODE_BETA

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
        live_mode = os.environ.get("LIVE_MODE", LIVE_MODE_BETA).lower()
        default_model = LIVE_MODEL_BETA if live_mode == LIVE_MODE_BETA else LIVE_MODEL_STABLE

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),

            gemini_api_key=os.environ.get("GEMINI_API_KEY"),
            live_mode=live_mode,
            live_model=os.environ.get("LIVE_MODEL", default_model),
            live_voice=os.environ.get("LIVE_VOICE", LIVE_VOICE_DEFAULT),
            handshake_timeout_s=float(
                os.environ.get("HANDSHAKE_TIMEOUT_S", HANDSHAKE_TIMEOUT_S)
            ),

            critic_provider=os.environ.get("CRITIC_PROVIDER", "openai").lower(),
            critic_model=os.environ.get("CRITIC_MODEL", CRITIC_MODEL_DEFAULT),
            critic_timeout_s=float(os.environ.get("CRITIC_TIMEOUT_S", CRITIC_TIMEOUT_S)),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),

            transcript_debounce_ms=int(
                os.environ.get("TRANSCRIPT_DEBOUNCE_MS", CALLER_DEBOUNCE_MS)
            ),
            lesson_retention_cap=int(
                os.environ.get("LESSON_RETENTION_CAP", LESSON_RETENTION_CAP)
            ),
            data_dir=os.environ.get("DATA_DIR", DATA_DIR_DEFAULT),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
