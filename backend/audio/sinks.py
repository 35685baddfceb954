"""
Playback sink contract.

A sink plays one float32 buffer and returns only when that buffer has
finished playing. The player relies on this to serialize playback.

Implementations:
- RelaySink: ships float32 buffers to the browser, paced by buffer duration
- SoundDeviceSink: local output device (audio/devices.py)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

import numpy as np


class AudioSink(ABC):
    """Output device abstraction consumed by AudioPlayer."""

    @abstractmethod
    async def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        """Play one buffer; return at its natural end."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Abort any in-progress playback. Idempotent."""
        raise NotImplementedError


class RelaySink(AudioSink):
    """
    Forwards playback buffers to a remote client as little-endian float32 bytes.

    The client schedules buffers back to back; pacing here by the buffer
    duration keeps the server-side "operator speaking" signal honest.
    """

    def __init__(
        self,
        send_bytes: Callable[[bytes], Awaitable[None]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._send_bytes = send_bytes
        self._sleep = sleep
        self._stopped = False

    async def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        if self._stopped:
            return
        await self._send_bytes(np.asarray(samples, dtype="<f4").tobytes())
        await self._sleep(len(samples) / float(sample_rate_hz))

    def stop(self) -> None:
        self._stopped = True
