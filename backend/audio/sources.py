"""
Microphone source contract.

An AudioSource yields float32 capture blocks (mono, [-1, 1]) at its own
sample rate. The encoder owns resampling; sources never convert.

Implementations:
- RelaySource: blocks pushed in by the browser relay (server/routes.py)
- SoundDeviceSource: local input device (audio/devices.py)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import numpy as np


class DeviceUnavailableError(Exception):
    """
    Raised when the capture device cannot be opened (permission denied,
    no device, device busy). Fatal to call start; never retried.
    """


class AudioSource(ABC):
    """Pull-based capture source consumed by AudioEncoder."""

    sample_rate_hz: int

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the capture device.

        Raises:
            DeviceUnavailableError if the device cannot be acquired.
        """
        raise NotImplementedError

    @abstractmethod
    async def read(self) -> np.ndarray | None:
        """Return the next capture block, or None once the source is exhausted."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release the device. Idempotent, synchronous, never raises."""
        raise NotImplementedError


class RelaySource(AudioSource):
    """
    Source fed by an external producer (the UI WebSocket relay).

    push() is non-blocking; blocks pushed after close() are dropped.
    """

    def __init__(self, sample_rate_hz: int) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._opened = False
        self._closed = False

    async def open(self) -> None:
        if self._closed:
            raise DeviceUnavailableError("relay source already closed")
        self._opened = True

    def push(self, samples: np.ndarray) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(samples)
        return True

    async def read(self) -> np.ndarray | None:
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a reader blocked in read()
        self._queue.put_nowait(None)

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed
