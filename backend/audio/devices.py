"""
Local sound-device source and sink (PortAudio via sounddevice).

Only the local client (tools/local_call.py) imports this module, so the
server and the unit tests never need a PortAudio installation.

Threading:
- The PortAudio input callback runs on its own thread; blocks are handed to
  the event loop with call_soon_threadsafe and never touch shared state there.
- Blocking output writes run in a worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import sounddevice as sd

from audio.sinks import AudioSink
from audio.sources import AudioSource, DeviceUnavailableError
from constants import (
    AUDIO_CHANNELS,
    EGRESS_SAMPLE_RATE_HZ,
    ENCODER_WINDOW_SAMPLES,
    INGRESS_SAMPLE_RATE_HZ,
)
from observability.logger import log_event


class SoundDeviceSource(AudioSource):
    """Microphone capture delivering ENCODER_WINDOW_SAMPLES-sized float32 blocks."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = INGRESS_SAMPLE_RATE_HZ,
        block_size: int = ENCODER_WINDOW_SAMPLES,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._block_size = block_size
        self._device = device

        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: sd.InputStream | None = None
        self._closed = False

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                blocksize=self._block_size,
                callback=self._on_audio_in,
                device=self._device,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailableError(str(exc)) from exc

    def _on_audio_in(self, data: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        if status:
            log_event({
                "event_type": "DEVICE_INPUT_STATUS",
                "level": "DEBUG",
                "status": str(status),
            })
        if self._loop is None or self._closed:
            return
        # Copy: PortAudio reuses the buffer after the callback returns
        block = np.array(data[:, 0], dtype=np.float32)
        self._loop.call_soon_threadsafe(self._queue.put_nowait, block)

    async def read(self) -> np.ndarray | None:
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self._queue.put_nowait(None)


class SoundDeviceSink(AudioSink):
    """Speaker output; play() returns once the buffer has been handed to the device."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = EGRESS_SAMPLE_RATE_HZ,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._device = device
        self._stream: sd.OutputStream | None = None
        self._stopped = False

    def _ensure_stream(self) -> sd.OutputStream:
        if self._stream is None:
            try:
                self._stream = sd.OutputStream(
                    samplerate=self._sample_rate_hz,
                    channels=AUDIO_CHANNELS,
                    dtype="float32",
                    device=self._device,
                )
                self._stream.start()
            except (sd.PortAudioError, ValueError) as exc:
                raise DeviceUnavailableError(str(exc)) from exc
        return self._stream

    async def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        if self._stopped:
            return
        if sample_rate_hz != self._sample_rate_hz:
            raise ValueError(
                f"sink opened at {self._sample_rate_hz} Hz, got {sample_rate_hz} Hz"
            )
        stream = self._ensure_stream()
        await asyncio.to_thread(stream.write, samples.reshape(-1, 1).astype(np.float32))

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._stream is not None:
            self._stream.abort()
            self._stream.close()
            self._stream = None
