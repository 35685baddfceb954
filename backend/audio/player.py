"""
Operator audio player: PCM16 @ 24 kHz -> float buffers -> strictly serialized playback.

Invariants:
- At most one buffer plays at any instant (single cursor task).
- Buffers play in arrival order.
- The cursor goes idle when the queue empties and is restarted by the
  next enqueue; there is no polling.
- The "operator speaking" signal is True exactly while the cursor runs.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Deque

import numpy as np

from audio.pcm import pcm16le_to_float32
from audio.sinks import AudioSink
from constants import EGRESS_SAMPLE_RATE_HZ
from observability.logger import log_event


class AudioPlayer:
    """FIFO playback queue with a single playback cursor."""

    def __init__(
        self,
        *,
        sink: AudioSink,
        on_speaking: Callable[[bool], None] | None = None,
        call_id: str | None = None,
        sample_rate_hz: int = EGRESS_SAMPLE_RATE_HZ,
    ) -> None:
        self._sink = sink
        self._on_speaking = on_speaking
        self._call_id = call_id
        self._sample_rate_hz = sample_rate_hz

        self._queue: Deque[np.ndarray] = deque()
        self._cursor: asyncio.Task[None] | None = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, pcm_bytes: bytes) -> None:
        """Decode one inbound audio payload and queue it for playback."""
        if self._stopped or not pcm_bytes:
            return

        self._queue.append(pcm16le_to_float32(pcm_bytes))

        if not self.is_playing:
            self._cursor = asyncio.create_task(self._drain())
            self._set_speaking(True)

    def stop(self) -> None:
        """Discard pending audio and abort the cursor. Idempotent."""
        if self._stopped:
            return
        self._stopped = True

        was_playing = self.is_playing
        dropped = len(self._queue)
        self._queue.clear()

        if was_playing:
            self._cursor.cancel()
        self._sink.stop()

        if dropped:
            log_event({
                "event_type": "PLAYBACK_DISCARDED",
                "call_id": self._call_id,
                "buffers": dropped,
            })
        if was_playing:
            self._set_speaking(False)

    @property
    def is_playing(self) -> bool:
        return self._cursor is not None and not self._cursor.done()

    @property
    def queued_buffers(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        try:
            while self._queue and not self._stopped:
                buffer = self._queue.popleft()
                try:
                    await self._sink.play(buffer, self._sample_rate_hz)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    log_event({
                        "event_type": "PLAYBACK_ERROR",
                        "level": "WARNING",
                        "call_id": self._call_id,
                        "exception": type(exc).__name__,
                        "message": str(exc),
                    })
        finally:
            if not self._stopped:
                self._set_speaking(False)

    def _set_speaking(self, speaking: bool) -> None:
        if self._on_speaking is not None:
            self._on_speaking(speaking)
