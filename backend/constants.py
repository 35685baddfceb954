"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for the behavioral invariants of the hotline engine.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (keys, model overrides, paths) live in config.py.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono, little-endian)
# =============================================================================

INGRESS_SAMPLE_RATE_HZ: Final[int] = 16_000
EGRESS_SAMPLE_RATE_HZ: Final[int] = 24_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

# Capture block handed to the encoder (~256 ms @ 16 kHz)
ENCODER_WINDOW_SAMPLES: Final[int] = 4096

# Float -> int16 quantization (asymmetric: int16 range is [-32768, 32767])
PCM16_NEGATIVE_SCALE: Final[int] = 0x8000
PCM16_POSITIVE_SCALE: Final[int] = 0x7FFF

# Wire MIME type of a PCM16 chunk, formatted with its sample rate
PCM_MIME_TYPE_FMT: Final[str] = "audio/pcm;rate={rate_hz}"

# Browser capture is typically 48kHz; resampled server-side when it differs
BROWSER_CAPTURE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 48_000

# Streaming polyphase resampler (Kaiser-windowed FIR, length 2*N*max(up, down)+1)
RESAMPLER_HALF_LEN_PER_RATE: Final[int] = 10
RESAMPLER_KAISER_BETA: Final[float] = 5.0

# =============================================================================
# Remote dialogue service (Gemini Live, BidiGenerateContent)
# =============================================================================

LIVE_WS_URL: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)

LIVE_MODEL_STABLE: Final[str] = "models/gemini-2.0-flash-exp"
LIVE_MODEL_BETA: Final[str] = "models/gemini-2.5-flash-native-audio-preview-12-2025"
LIVE_VOICE_DEFAULT: Final[str] = "Aoede"
LIVE_RESPONSE_MODALITIES: Final[Tuple[str, ...]] = ("AUDIO",)

LIVE_MODE_BETA: Final[str] = "beta"      # transcription + learning loop
LIVE_MODE_STABLE: Final[str] = "stable"  # audio only

HANDSHAKE_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# Transcript Assembly
# =============================================================================

CALLER_DEBOUNCE_MS: Final[int] = 800

# =============================================================================
# Call Session
# =============================================================================

CALL_ID_PREFIX: Final[str] = "CALL"
CALL_ID_SUFFIX_CHARS: Final[int] = 9

# How often a held call re-checks its hang-up deadline
HOLD_POLL_INTERVAL_S: Final[float] = 0.25

# A critique needs at least one exchange
CRITIC_MIN_MESSAGES: Final[int] = 2

# =============================================================================
# Critic & Lessons
# =============================================================================

LESSON_RETENTION_CAP: Final[int] = 50

CRITIC_SCORE_MIN: Final[int] = 1
CRITIC_SCORE_MAX: Final[int] = 10
CRITIC_SCORE_NEUTRAL: Final[int] = 5

CRITIC_TIMEOUT_S: Final[float] = 60.0
CRITIC_MAX_TOKENS: Final[int] = 1024

CRITIC_MODEL_DEFAULT: Final[str] = "gpt-4o-mini"

# =============================================================================
# Persistence
# =============================================================================

DATA_DIR_DEFAULT: Final[str] = "data"
LESSONS_FILENAME: Final[str] = "lessons.json"
TRANSCRIPTS_DIRNAME: Final[str] = "transcripts"

# =============================================================================
# Logging
# =============================================================================

LOG_LEVELS: Final[Tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
