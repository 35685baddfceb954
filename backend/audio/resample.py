"""
Streaming polyphase resampler.

A capture stream arrives as a sequence of blocks; resampling each block on
its own restarts the FIR filter at every boundary and rounds every block's
output length, which leaves a click per block and a slowly drifting clock.

StreamingResampler keeps the filter history and the output position across
calls instead:
- Feeding a signal block by block yields exactly the samples that feeding it
  in one piece would.
- Output sample n is emitted as soon as the newest input it depends on has
  arrived, so the total output length tracks input_len * up / down exactly.
- The filter is causal; it adds a fixed delay of half the filter length.
"""

from __future__ import annotations

from math import gcd

import numpy as np
from scipy import signal

from constants import RESAMPLER_HALF_LEN_PER_RATE, RESAMPLER_KAISER_BETA


class StreamingResampler:
    """Rational-ratio resampler that carries its state from block to block."""

    def __init__(self, from_hz: int, to_hz: int) -> None:
        if from_hz <= 0 or to_hz <= 0:
            raise ValueError(f"sample rates must be positive: {from_hz} -> {to_hz}")

        self.from_hz = from_hz
        self.to_hz = to_hz

        g = gcd(from_hz, to_hz)
        self._up = to_hz // g
        self._down = from_hz // g

        # Same anti-alias design as scipy.signal.resample_poly
        max_rate = max(self._up, self._down)
        half_len = RESAMPLER_HALF_LEN_PER_RATE * max_rate
        taps = signal.firwin(
            2 * half_len + 1,
            1.0 / max_rate,
            window=("kaiser", RESAMPLER_KAISER_BETA),
        ) * self._up

        taps_per_phase = -(-taps.size // self._up)
        padded = np.zeros(taps_per_phase * self._up)
        padded[:taps.size] = taps
        # _phases[p, j] weighs the j-th most recent input for upsampled phase p
        self._phases = padded.reshape(taps_per_phase, self._up).T
        self._lags = np.arange(taps_per_phase)

        self._history = np.zeros(taps_per_phase - 1)
        self._consumed = 0
        self._emitted = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        """Resample the next block of the stream."""
        x = np.asarray(samples, dtype=np.float64).reshape(-1)
        if x.size == 0:
            return np.zeros(0, dtype=np.float32)

        buffer = np.concatenate((self._history, x))
        base = self._consumed - self._history.size
        self._consumed += x.size

        # output n depends on inputs up to (n * down) // up
        last = (self._consumed * self._up - 1) // self._down
        n = np.arange(self._emitted, last + 1)
        self._emitted = last + 1

        position = n * self._down
        newest = position // self._up - base
        window = buffer[newest[:, None] - self._lags[None, :]]
        out = np.einsum("ij,ij->i", window, self._phases[position % self._up])

        keep = self._history.size
        self._history = buffer[buffer.size - keep:] if keep else self._history
        return out.astype(np.float32)
