"""
Call gateway: one UI WebSocket connection <-> one CallController.

Responsibilities:
- Owns the CallController for a browser connection
- Routes inbound JSON control messages -> controller commands
- Routes inbound binary microphone blocks -> the current RelaySource
- Collects outbound traffic (JSON signals, float32 playback buffers)
  on a single queue that the route drains

Still NOT responsible for:
- Any call lifecycle decisions (controller)
- Wire format of the remote dialogue service (protocol/live.py)

Inbound JSON:
    {"type": "START_CALL", "sample_rate": 48000}
    {"type": "END_CALL"}
    {"type": "EXPORT_CALL"}
    {"type": "GET_METADATA"}

Inbound binary:
    little-endian float32 mono samples at the START_CALL sample rate

Outbound:
    JSON signals from the controller plus gateway replies
    ({"type": "ERROR", "code": ...}, {"type": "CALL_EXPORT", ...},
     {"type": "CALL_METADATA", ...}); binary little-endian float32
    playback buffers at 24 kHz.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, TYPE_CHECKING
from uuid import uuid4

from adapters.live.base import LiveSessionHandler
from adapters.live.transport import ConnectFn, LiveTransport, build_live_url
from audio.pcm import float32le_bytes_to_array
from audio.sinks import RelaySink
from audio.sources import RelaySource
from constants import BROWSER_CAPTURE_SAMPLE_RATE_HZ_DEFAULT, LIVE_WS_URL
from feedback.critic import Critic
from feedback.lessons import LessonStore
from observability.logger import log_event
from protocol.live import SetupConfig
from session.controller import CallAlreadyActive, CallController
from storage.transcripts import TranscriptStore

if TYPE_CHECKING:
    from config import AppConfig

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_connection_id() -> str:
    return f"conn_{uuid4().hex[:12]}"


Outbound = dict[str, Any] | bytes


class CallGateway:
    """
    One gateway == one browser connection (sequential calls allowed).
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        lesson_store: LessonStore,
        transcript_store: TranscriptStore | None = None,
        critic: Critic | None = None,
        live_connect: ConnectFn | None = None,
    ) -> None:
        self._config = config
        self._live_connect = live_connect
        self.connection_id = _new_connection_id()
        self.outbound: asyncio.Queue[Outbound] = asyncio.Queue()

        self._capture_rate_hz = BROWSER_CAPTURE_SAMPLE_RATE_HZ_DEFAULT
        self._source: RelaySource | None = None
        self._dropped_blocks = 0

        self.controller = CallController(
            config=config,
            lesson_store=lesson_store,
            transport_factory=self._make_transport,
            source_factory=self._make_source,
            sink_factory=lambda: RelaySink(self._send_playback),
            emit_signal=self.outbound.put_nowait,
            critic=critic,
            transcript_store=transcript_store,
        )

    # ------------------------------------------------------------------
    # Factories handed to the controller
    # ------------------------------------------------------------------

    def _make_transport(
        self,
        setup: SetupConfig,
        handler: LiveSessionHandler,
        call_id: str,
    ) -> LiveTransport:
        return LiveTransport(
            url=build_live_url(LIVE_WS_URL, self._config.gemini_api_key),
            setup=setup,
            handler=handler,
            call_id=call_id,
            handshake_timeout_s=self._config.handshake_timeout_s,
            connect=self._live_connect,
        )

    def _make_source(self) -> RelaySource:
        self._source = RelaySource(self._capture_rate_hz)
        return self._source

    async def _send_playback(self, data: bytes) -> None:
        self.outbound.put_nowait(data)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def on_json_message(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            self._reply_error("INVALID_JSON")
            return
        if not isinstance(msg, dict):
            self._reply_error("INVALID_MESSAGE")
            return

        msg_type = msg.get("type")

        if msg_type == "START_CALL":
            await self._start_call(msg)
        elif msg_type == "END_CALL":
            await self.controller.end_call()
        elif msg_type == "EXPORT_CALL":
            exported = self.controller.export_json()
            if exported is None:
                self._reply_error("NO_CALL")
            else:
                self.outbound.put_nowait({"type": "CALL_EXPORT", "json": exported})
        elif msg_type == "GET_METADATA":
            self.outbound.put_nowait({
                "type": "CALL_METADATA",
                "call": self.controller.metadata(),
            })
        else:
            self._reply_error("UNKNOWN_MESSAGE_TYPE", detail=str(msg_type))

    async def on_binary_message(self, data: bytes) -> None:
        source = self._source
        if source is None or not self.controller.is_live:
            self._dropped_blocks += 1
            return
        if not source.push(float32le_bytes_to_array(data)):
            self._dropped_blocks += 1

    async def on_ws_disconnect(self, reason: str) -> None:
        log_event({
            "event_type": "UI_DISCONNECTED",
            "connection_id": self.connection_id,
            "reason": reason,
            "dropped_mic_blocks": self._dropped_blocks,
        })
        await self.controller.end_call(reason=reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _start_call(self, msg: dict[str, Any]) -> None:
        if self.controller.is_open:
            self._reply_error("CALL_ALREADY_ACTIVE")
            return

        rate = msg.get("sample_rate", BROWSER_CAPTURE_SAMPLE_RATE_HZ_DEFAULT)
        if not isinstance(rate, int) or rate <= 0:
            self._reply_error("INVALID_SAMPLE_RATE", detail=str(rate))
            return
        self._capture_rate_hz = rate
        self._source = None

        try:
            await self.controller.start_call()
        except CallAlreadyActive:
            self._reply_error("CALL_ALREADY_ACTIVE")

    def _reply_error(self, code: str, *, detail: str | None = None) -> None:
        log_event({
            "event_type": "UI_MESSAGE_REJECTED",
            "level": "WARNING",
            "ts_ms": _now_ms(),
            "connection_id": self.connection_id,
            "code": code,
            "detail": detail,
        })
        self.outbound.put_nowait({"type": "ERROR", "code": code, "detail": detail})
