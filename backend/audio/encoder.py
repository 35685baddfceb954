"""
Microphone encoder: float capture blocks -> PCM16 @ 16 kHz frames.

Push-only pipeline:
- Every capture block becomes exactly one AudioFrame.
- Resampling is continuous across blocks (see audio.resample), so frame
  boundaries carry no filter edge.
- Frames are handed to the transport immediately; the encoder keeps no backlog.
- If the transport refuses a frame (not active / closed) the pump stops.

Device errors surface from start() as DeviceUnavailableError; encoding never
begins in that case and nothing is retried.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import numpy as np

from audio.frames import AudioFrame
from audio.pcm import float32_to_pcm16le
from audio.resample import StreamingResampler
from audio.sources import AudioSource, DeviceUnavailableError
from constants import INGRESS_SAMPLE_RATE_HZ
from observability.logger import log_event


def _now_ms() -> int:
    return int(time.time() * 1000)


class AudioEncoder:
    """
    Owns the capture pump for one call.

    send_frame:
        Awaitable callback into the transport. Returns False when the frame
        was refused, which ends the pump.
    """

    def __init__(
        self,
        *,
        send_frame: Callable[[AudioFrame], Awaitable[bool]],
        call_id: str | None = None,
        target_rate_hz: int = INGRESS_SAMPLE_RATE_HZ,
    ) -> None:
        self._send_frame = send_frame
        self._call_id = call_id
        self._target_rate_hz = target_rate_hz

        self._source: AudioSource | None = None
        self._task: asyncio.Task[None] | None = None
        self._resampler: StreamingResampler | None = None
        self._next_seq = 0
        self._stopped = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def encode_block(self, samples: np.ndarray, sample_rate_hz: int) -> AudioFrame:
        """Resample (if needed), clamp and quantize one capture block."""
        mono = np.asarray(samples, dtype=np.float32).reshape(-1)
        if sample_rate_hz != self._target_rate_hz:
            mono = self._resample(mono, sample_rate_hz)
        frame = AudioFrame(
            pcm_bytes=float32_to_pcm16le(mono),
            sample_rate_hz=self._target_rate_hz,
            sequence_num=self._next_seq,
            ts_ms=_now_ms(),
        )
        self._next_seq += 1
        return frame

    async def start(self, source: AudioSource) -> None:
        """
        Open the device and start pumping.

        Raises:
            DeviceUnavailableError if the source cannot be opened.
        """
        if self._task is not None:
            raise RuntimeError("encoder already started")
        if self._stopped:
            return

        try:
            await source.open()
        except DeviceUnavailableError:
            self._log_device_error("device_unavailable")
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_device_error(f"{type(exc).__name__}: {exc}")
            raise DeviceUnavailableError(str(exc)) from exc

        if self._stopped:
            # stop() raced the device open
            source.close()
            return

        self._source = source
        self._task = asyncio.create_task(self._pump(source))

        log_event({
            "event_type": "ENCODER_STARTED",
            "call_id": self._call_id,
            "capture_rate_hz": source.sample_rate_hz,
            "target_rate_hz": self._target_rate_hz,
        })

    def stop(self) -> None:
        """
        Synchronous teardown: release the device and cancel the pump.

        Idempotent. After stop() no further frame is produced.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._source is not None:
            self._source.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()

        log_event({
            "event_type": "ENCODER_STOPPED",
            "call_id": self._call_id,
            "frames_sent": self._next_seq,
        })

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    @property
    def frames_encoded(self) -> int:
        return self._next_seq

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resample(self, samples: np.ndarray, sample_rate_hz: int) -> np.ndarray:
        # one resampler per capture stream; a rate change starts a new stream
        if self._resampler is None or self._resampler.from_hz != sample_rate_hz:
            self._resampler = StreamingResampler(sample_rate_hz, self._target_rate_hz)
        return self._resampler.process(samples)

    async def _pump(self, source: AudioSource) -> None:
        while not self._stopped:
            block = await source.read()
            if block is None or self._stopped:
                return

            frame = self.encode_block(block, source.sample_rate_hz)
            accepted = await self._send_frame(frame)
            if not accepted:
                log_event({
                    "event_type": "ENCODER_FRAME_REFUSED",
                    "level": "DEBUG",
                    "call_id": self._call_id,
                    "sequence_num": frame.sequence_num,
                })
                return

    def _log_device_error(self, reason: str) -> None:
        log_event({
            "event_type": "DEVICE_ERROR",
            "level": "ERROR",
            "call_id": self._call_id,
            "reason": reason,
        })
