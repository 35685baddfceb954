"""PCM conversion utilities."""
from __future__ import annotations

import base64

import numpy as np

from constants import PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Convert float samples to PCM16 little-endian mono bytes.

    Samples are clamped to [-1.0, 1.0] first, then scaled asymmetrically
    (x * 0x8000 below zero, x * 0x7FFF at or above) so both rails map
    exactly onto the int16 range. Out-of-range input saturates, never wraps.
    """
    clamped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(
        clamped < 0,
        clamped * PCM16_NEGATIVE_SCALE,
        clamped * PCM16_POSITIVE_SCALE,
    )
    return scaled.astype("<i2").tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Runtime-safe, adapter-agnostic utility.
    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the dangling byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def float32le_bytes_to_array(raw: bytes) -> np.ndarray:
    """Interpret raw little-endian float32 bytes (browser capture blocks)."""
    usable = len(raw) - (len(raw) % 4)
    return np.frombuffer(raw[:usable], dtype="<f4")


def b64encode_pcm(pcm_bytes: bytes) -> str:
    return base64.b64encode(pcm_bytes).decode("ascii")


def b64decode_pcm(data: str) -> bytes:
    """
    Decode a base64 audio payload.

    Raises:
        binascii.Error (ValueError) on malformed input.
    """
    return base64.b64decode(data, validate=True)


def pcm16_duration_s(pcm_bytes: bytes, sample_rate_hz: int) -> float:
    return (len(pcm_bytes) // 2) / float(sample_rate_hz)
