"""
Audio frame primitives.

Pure data containers only.
No queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

from constants import AUDIO_SAMPLE_WIDTH_BYTES, PCM_MIME_TYPE_FMT


@dataclass(frozen=True)
class AudioFrame:
    """
    Canonical audio frame used throughout the pipeline.

    pcm_bytes:
        Raw PCM16 little-endian mono audio.

    sample_rate_hz:
        16 kHz on ingress (mic -> remote), 24 kHz on egress (remote -> speaker).

    sequence_num:
        Monotonic per-call counter assigned by the producer.
        Used for debugging only.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was produced.
        Used for observability only (not control logic).
    """
    pcm_bytes: bytes
    sample_rate_hz: int
    sequence_num: int
    ts_ms: int

    @property
    def sample_count(self) -> int:
        return len(self.pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def duration_s(self) -> float:
        return self.sample_count / float(self.sample_rate_hz)

    @property
    def mime_type(self) -> str:
        return PCM_MIME_TYPE_FMT.format(rate_hz=self.sample_rate_hz)
