"""
Duplex WebSocket transport to the remote dialogue service.

State machine (no retries anywhere):

    idle -> connecting -> handshaking -> active -> closing -> closed
                |              |            |
                +--------------+------------+--> closed (failure)

- connecting:  socket is being opened.
- handshaking: setup frame sent; waiting for setupComplete (bounded by a watchdog).
- active:      audio may be sent; inbound frames are demultiplexed to the handler.
- closing:     handler.on_closing() runs (encoder stop, transcript flush).
- closed:      terminal. Exactly one of on_closed / on_failure has been called.

Failures (connect error, handshake timeout, a malformed or unexpected
frame during the handshake, remote close during handshake, mid-session
socket error) go straight to closed and are reported through
handler.on_failure().

A malformed frame while active is dropped and logged; the call continues.

Design constraints:
- Transport must not know about the player, transcript buffers or UI.
- One transport instance serves exactly one call.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect

from adapters.live.base import LiveSessionHandler
from audio.frames import AudioFrame
from constants import HANDSHAKE_TIMEOUT_S
from observability.logger import log_event
from observability.metrics import cancel_timer, start_timer, stop_timer
from protocol.live import (
    AudioChunk,
    CallerTranscription,
    FragmentError,
    LiveEvent,
    MalformedMessage,
    OperatorText,
    OperatorTranscription,
    SetupComplete,
    SetupConfig,
    TurnComplete,
    build_audio_message,
    build_setup_message,
    encode_message,
    parse_server_message,
)

# Gemini audio frames regularly exceed the websockets 1 MiB default
_MAX_FRAME_BYTES = 16 * 1024 * 1024

# Longest slice of an offending frame carried into a failure reason
_EXCERPT_CHARS = 200

ConnectFn = Callable[[str], Awaitable[Any]]


def default_connect(url: str) -> Awaitable[Any]:
    return ws_connect(url, max_size=_MAX_FRAME_BYTES)


def _excerpt(raw: str | bytes) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text[:_EXCERPT_CHARS]


class TransportState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class LiveTransport:
    """
    One duplex session with the remote dialogue service.

    connect:
        Injectable socket factory. The returned object must support
        `await send(str)`, `await close()` and `async for raw in socket`.
        Defaults to websockets.asyncio.client.connect.
    """

    def __init__(
        self,
        *,
        url: str,
        setup: SetupConfig,
        handler: LiveSessionHandler,
        call_id: str | None = None,
        handshake_timeout_s: float = HANDSHAKE_TIMEOUT_S,
        connect: ConnectFn | None = None,
    ) -> None:
        self._url = url
        self._setup = setup
        self._handler = handler
        self._call_id = call_id
        self._handshake_timeout_s = handshake_timeout_s
        self._connect = connect or default_connect

        # Raw model text duplicates the output transcription when both are on
        self._route_text_parts = not setup.output_transcription

        self._state = TransportState.IDLE
        self._ws: Any = None
        self._recv_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._handshake_timer: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TransportState.ACTIVE

    async def open(self) -> None:
        """
        Connect, send the setup frame and start the receive loop.

        Returns once the setup frame is sent (state HANDSHAKING) or the
        attempt failed (state CLOSED, handler.on_failure called).
        """
        if self._state is not TransportState.IDLE:
            raise RuntimeError(f"transport already used (state={self._state.value})")

        self._set_state(TransportState.CONNECTING)
        self._handshake_timer = start_timer("live_handshake_latency")

        try:
            self._ws = await self._connect(self._url)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(f"connect_failed: {type(exc).__name__}: {exc}")
            return

        self._set_state(TransportState.HANDSHAKING)

        try:
            await self._ws.send(encode_message(build_setup_message(self._setup)))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(f"setup_send_failed: {type(exc).__name__}: {exc}")
            return

        self._recv_task = asyncio.create_task(self._receive_loop())
        self._watchdog_task = asyncio.create_task(self._handshake_watchdog())

    async def send_audio(self, frame: AudioFrame) -> bool:
        """
        Send one capture frame.

        Returns:
            True if the frame was written, False if refused (not active)
            or the write failed (transport is then closed as failed).
        """
        if self._state is not TransportState.ACTIVE:
            return False

        try:
            await self._ws.send(encode_message(build_audio_message(frame)))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            await self._fail(f"send_failed: {type(exc).__name__}: {exc}")
            return False
        return True

    async def close(self, reason: str = "local_hangup") -> None:
        """
        Orderly close. Idempotent.

        From ACTIVE: closing hook runs before the socket goes away.
        From CONNECTING/HANDSHAKING: the attempt is abandoned without the hook.
        """
        if self._state in (TransportState.CLOSING, TransportState.CLOSED):
            return

        if self._state is TransportState.ACTIVE:
            self._set_state(TransportState.CLOSING)
            await self._handler.on_closing()
            if self._state is TransportState.CLOSED:
                return

        await self._teardown()
        self._set_state(TransportState.CLOSED, reason=reason)
        await self._handler.on_closed(reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                await self._dispatch(raw)
                if self._state is TransportState.CLOSED:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if self._state in (TransportState.HANDSHAKING, TransportState.ACTIVE):
                await self._fail(f"transport_error: {type(exc).__name__}: {exc}")
            return

        # Remote ended the stream cleanly
        if self._state is TransportState.HANDSHAKING:
            await self._fail("remote_closed_during_handshake")
        elif self._state is TransportState.ACTIVE:
            await self.close(reason="remote_closed")

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            events = parse_server_message(raw)
        except MalformedMessage as exc:
            if self._state is TransportState.HANDSHAKING:
                await self._fail(f"malformed_handshake: {exc}")
                return
            log_event({
                "event_type": "LIVE_FRAME_DROPPED",
                "level": "WARNING",
                "call_id": self._call_id,
                "reason": str(exc),
            })
            return

        if self._state is TransportState.HANDSHAKING and not any(
            isinstance(event, SetupComplete) for event in events
        ):
            # only the setup acknowledgment may arrive before ACTIVE
            await self._fail(f"unexpected_handshake_frame: {_excerpt(raw)}")
            return

        for event in events:
            await self._route(event)

    async def _route(self, event: LiveEvent) -> None:
        if isinstance(event, SetupComplete):
            if self._state is TransportState.HANDSHAKING:
                await self._activate()
            return

        if self._state is not TransportState.ACTIVE:
            log_event({
                "event_type": "LIVE_EVENT_IGNORED",
                "level": "DEBUG",
                "call_id": self._call_id,
                "state": self._state.value,
                "live_event": event.event_type.value,
            })
            return

        if isinstance(event, AudioChunk):
            await self._handler.on_audio(event.pcm_bytes)
        elif isinstance(event, OperatorTranscription):
            await self._handler.on_operator_text(event.text)
        elif isinstance(event, OperatorText):
            if self._route_text_parts:
                await self._handler.on_operator_text(event.text)
        elif isinstance(event, CallerTranscription):
            await self._handler.on_caller_text(event.text)
        elif isinstance(event, TurnComplete):
            await self._handler.on_turn_complete()
        elif isinstance(event, FragmentError):
            log_event({
                "event_type": "LIVE_FRAGMENT_DROPPED",
                "level": "WARNING",
                "call_id": self._call_id,
                "reason": event.reason,
            })

    async def _activate(self) -> None:
        self._cancel_watchdog()
        if self._handshake_timer is not None:
            stop_timer(self._handshake_timer, call_id=self._call_id)
            self._handshake_timer = None

        self._set_state(TransportState.ACTIVE)
        await self._handler.on_active()

    async def _handshake_watchdog(self) -> None:
        await asyncio.sleep(self._handshake_timeout_s)
        if self._state is TransportState.HANDSHAKING:
            await self._fail("handshake_timeout")

    async def _fail(self, reason: str) -> None:
        if self._state is TransportState.CLOSED:
            return

        log_event({
            "event_type": "LIVE_TRANSPORT_FAILED",
            "level": "ERROR",
            "call_id": self._call_id,
            "state": self._state.value,
            "reason": reason,
        })

        await self._teardown()
        self._set_state(TransportState.CLOSED, reason=reason)
        await self._handler.on_failure(reason)

    async def _teardown(self) -> None:
        if self._handshake_timer is not None:
            cancel_timer(self._handshake_timer)
            self._handshake_timer = None

        self._cancel_watchdog()

        current = asyncio.current_task()
        if self._recv_task is not None and self._recv_task is not current:
            self._recv_task.cancel()

        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "LIVE_SOCKET_CLOSE_ERROR",
                    "level": "DEBUG",
                    "call_id": self._call_id,
                    "exception": type(exc).__name__,
                })

    def _cancel_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _set_state(self, state: TransportState, *, reason: str | None = None) -> None:
        previous = self._state
        self._state = state
        log_event({
            "event_type": "LIVE_TRANSPORT_STATE",
            "call_id": self._call_id,
            "from": previous.value,
            "to": state.value,
            "reason": reason,
        })


def build_live_url(base_url: str, api_key: str | None) -> str:
    return f"{base_url}?key={api_key}" if api_key else base_url

