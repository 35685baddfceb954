# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any

import numpy as np

from adapters.live.base import LiveSessionHandler
from adapters.llm.base import CriticClient
from audio.sinks import AudioSink
from audio.sources import AudioSource, DeviceUnavailableError
from config import AppConfig


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def make_config(**overrides: Any) -> AppConfig:
    base = AppConfig(
        env="test",
        log_level="DEBUG",
        gemini_api_key="test-key",
        live_mode="beta",
        live_model="models/test-live",
        live_voice="Aoede",
        handshake_timeout_s=1.0,
        critic_provider="openai",
        critic_model="test-critic",
        critic_timeout_s=1.0,
        openai_api_key=None,
        anthropic_api_key=None,
        groq_api_key=None,
        transcript_debounce_ms=50,
        lesson_retention_cap=50,
        data_dir="data",
        enable_json_logs=True,
    )
    return replace(base, **overrides)


async def settle(seconds: float = 0.02) -> None:
    """Let pending tasks and callbacks run."""
    await asyncio.sleep(seconds)


# ---------------------------------------------------------------------------
# Remote dialogue socket
# ---------------------------------------------------------------------------

_CLOSE = object()


class FakeLiveSocket:
    """Stands in for a websockets ClientConnection."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def push(self, message: dict[str, Any] | str | bytes) -> None:
        self._inbox.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def push_close(self) -> None:
        self._inbox.put_nowait(_CLOSE)

    def push_error(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent]

    def __aiter__(self) -> FakeLiveSocket:
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


def connect_to(socket: FakeLiveSocket, urls: list[str] | None = None):
    async def _connect(url: str) -> FakeLiveSocket:
        if urls is not None:
            urls.append(url)
        return socket
    return _connect


async def refuse_connect(url: str) -> FakeLiveSocket:
    raise OSError(f"connection refused: {url}")


class RecordingHandler(LiveSessionHandler):
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def on_active(self) -> None:
        self.calls.append(("active", None))

    async def on_audio(self, pcm_bytes: bytes) -> None:
        self.calls.append(("audio", pcm_bytes))

    async def on_operator_text(self, text: str) -> None:
        self.calls.append(("operator_text", text))

    async def on_caller_text(self, text: str) -> None:
        self.calls.append(("caller_text", text))

    async def on_turn_complete(self) -> None:
        self.calls.append(("turn_complete", None))

    async def on_closing(self) -> None:
        self.calls.append(("closing", None))

    async def on_closed(self, reason: str) -> None:
        self.calls.append(("closed", reason))

    async def on_failure(self, reason: str) -> None:
        self.calls.append(("failure", reason))


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

class FakeSink(AudioSink):
    """Records playback intervals on the loop clock; each buffer takes `play_s`."""

    def __init__(self, play_s: float = 0.01) -> None:
        self.play_s = play_s
        self.intervals: list[tuple[float, float]] = []
        self.buffers: list[np.ndarray] = []
        self.stopped = False

    async def play(self, samples: np.ndarray, sample_rate_hz: int) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()
        await asyncio.sleep(self.play_s)
        self.intervals.append((start, loop.time()))
        self.buffers.append(samples)

    def stop(self) -> None:
        self.stopped = True


class ListSource(AudioSource):
    """Yields preset blocks, then ends."""

    def __init__(self, blocks: list[np.ndarray], sample_rate_hz: int = 16_000) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._blocks = list(blocks)
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def read(self) -> np.ndarray | None:
        await asyncio.sleep(0)
        if self.closed or not self._blocks:
            return None
        return self._blocks.pop(0)

    def close(self) -> None:
        self.closed = True


class BrokenSource(AudioSource):
    sample_rate_hz = 16_000

    def __init__(self) -> None:
        self.closed = False

    async def open(self) -> None:
        raise DeviceUnavailableError("permission denied")

    async def read(self) -> np.ndarray | None:
        raise AssertionError("read() must not be called on an unopened source")

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Critic
# ---------------------------------------------------------------------------

class FakeCriticClient(CriticClient):
    def __init__(
        self,
        response: str = "",
        *,
        error: BaseException | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.response = response
        self.error = error
        self.delay_s = delay_s
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.response
