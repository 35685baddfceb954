"""
Call session controller.

Owns the lifecycle of one call at a time and wires the pipeline:

    AudioSource -> AudioEncoder -> LiveTransport -> (remote)
    (remote) -> LiveTransport -> AudioPlayer / TranscriptAssembler -> CallSession
    CallSession (finalized) -> TranscriptStore, Critic

Lifecycle:
- start_call(): new CallSession, lessons read once, instructions composed,
  fresh transport opened (setup frame sent).
- setup acknowledged: call goes live, microphone starts. A device error
  fails the call and closes the transport.
- end_call(): end time recorded, encoder stopped, transcript flushed,
  playback stopped, transport closed, record persisted, and (for a finished
  call with at least one exchange) a snapshot handed to the critic without
  waiting for it.
- remote close / transport failure: same teardown, driven by the transport.

UI signals are plain dicts ({"type": SignalType, ...}) passed to emit_signal;
the server relays them as JSON.
"""

from __future__ import annotations

import asyncio
import json
import time
from enum import Enum
from typing import Any, Callable

from adapters.live.base import LiveSessionHandler
from adapters.live.transport import LiveTransport
from adapters.llm.prompts import OPERATOR_INSTRUCTIONS_V1, compose_operator_instructions
from audio.encoder import AudioEncoder
from audio.player import AudioPlayer
from audio.sinks import AudioSink
from audio.sources import AudioSource, DeviceUnavailableError
from config import AppConfig
from constants import CRITIC_MIN_MESSAGES, HOLD_POLL_INTERVAL_S
from context.transcript import Role, TranscriptAssembler, TranscriptMessage
from feedback.critic import Critic, CriticVerdict, CritiqueRequest
from feedback.lessons import LessonStore
from observability.logger import log_event
from observability.metrics import emit_metric
from protocol.live import SetupConfig
from session.call_session import CallSession, CallStatus, format_duration, new_call_id
from storage.transcripts import CallRecord, TranscriptStore


def _now_ms() -> int:
    return int(time.time() * 1000)


CONNECTION_ERROR_MESSAGE = "Connection error. Please try again."
MICROPHONE_ERROR_MESSAGE = "Could not access microphone. Please allow microphone access."
MODEL_UNAVAILABLE_MESSAGE = (
    "Beta model not available. Switch to stable mode and try again."
)


class SignalType(str, Enum):
    CALL_CONNECTING = "CALL_CONNECTING"
    CALL_CONNECTED = "CALL_CONNECTED"
    CALL_ENDED = "CALL_ENDED"
    CALL_ERROR = "CALL_ERROR"
    TRANSCRIPT_MESSAGE = "TRANSCRIPT_MESSAGE"
    TRANSCRIPT_PARTIAL = "TRANSCRIPT_PARTIAL"
    OPERATOR_SPEAKING = "OPERATOR_SPEAKING"
    MIC_ACTIVE = "MIC_ACTIVE"
    LESSONS_APPLIED = "LESSONS_APPLIED"
    CRITIQUE_READY = "CRITIQUE_READY"


class CallAlreadyActive(RuntimeError):
    """start_call() while the previous call is still open."""


TransportFactory = Callable[[SetupConfig, LiveSessionHandler, str], LiveTransport]
SourceFactory = Callable[[], AudioSource]
SinkFactory = Callable[[], AudioSink]
SignalSink = Callable[[dict[str, Any]], None]


def user_message_for_failure(reason: str) -> str:
    if reason == "device_unavailable":
        return MICROPHONE_ERROR_MESSAGE
    if "not found" in reason.lower():
        return MODEL_UNAVAILABLE_MESSAGE
    return CONNECTION_ERROR_MESSAGE


class _CallHandler(LiveSessionHandler):
    """
    Transport callbacks bound to one call.

    Events from a transport whose call is no longer current are ignored.
    """

    def __init__(self, controller: CallController, call_id: str) -> None:
        self._controller = controller
        self._call_id = call_id

    def _current(self) -> bool:
        call = self._controller.current_call
        return call is not None and call.call_id == self._call_id

    async def on_active(self) -> None:
        if self._current():
            await self._controller._on_active()  # pylint: disable=protected-access

    async def on_audio(self, pcm_bytes: bytes) -> None:
        if self._current():
            self._controller._on_audio(pcm_bytes)  # pylint: disable=protected-access

    async def on_operator_text(self, text: str) -> None:
        if self._current():
            self._controller._on_operator_text(text)  # pylint: disable=protected-access

    async def on_caller_text(self, text: str) -> None:
        if self._current():
            self._controller._on_caller_text(text)  # pylint: disable=protected-access

    async def on_turn_complete(self) -> None:
        if self._current():
            self._controller._on_turn_complete()  # pylint: disable=protected-access

    async def on_closing(self) -> None:
        if self._current():
            self._controller._on_closing()  # pylint: disable=protected-access

    async def on_closed(self, reason: str) -> None:
        if self._current():
            await self._controller._on_closed(reason)  # pylint: disable=protected-access

    async def on_failure(self, reason: str) -> None:
        if self._current():
            await self._controller._on_failure(reason)  # pylint: disable=protected-access


class CallController:
    """
    Orchestrates one call at a time. Reusable for sequential calls.

    Collaborators are injected so the whole pipeline runs against fakes
    in tests (no network, no audio hardware).
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        lesson_store: LessonStore,
        transport_factory: TransportFactory,
        source_factory: SourceFactory,
        sink_factory: SinkFactory,
        emit_signal: SignalSink | None = None,
        critic: Critic | None = None,
        transcript_store: TranscriptStore | None = None,
        clock: Callable[[], int] = _now_ms,
        instructions_template: str = OPERATOR_INSTRUCTIONS_V1,
    ) -> None:
        self._config = config
        self._lessons = lesson_store
        self._transport_factory = transport_factory
        self._source_factory = source_factory
        self._sink_factory = sink_factory
        self._emit_signal = emit_signal
        self._critic = critic
        self._transcripts = transcript_store
        self._clock = clock
        self._template = instructions_template

        self._call: CallSession | None = None
        self._transport: LiveTransport | None = None
        self._encoder: AudioEncoder | None = None
        self._player: AudioPlayer | None = None
        self._assembler: TranscriptAssembler | None = None
        self._ending = False
        self._lessons_applied = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_call(self) -> CallSession | None:
        return self._call

    @property
    def is_live(self) -> bool:
        return self._call is not None and self._call.status is CallStatus.LIVE

    @property
    def is_open(self) -> bool:
        return self._call is not None and not self._call.is_finalized

    @property
    def lessons_applied(self) -> int:
        return self._lessons_applied

    def metadata(self) -> dict[str, Any] | None:
        call = self._call
        if call is None:
            return None
        duration_ms = call.duration_ms(self._clock())
        return {
            "call_id": call.call_id,
            "status": call.status.value,
            "duration_ms": duration_ms,
            "duration": format_duration(duration_ms),
            "message_count": len(call.messages),
            "lessons_applied": self._lessons_applied,
        }

    def export_json(self) -> str | None:
        """Pretty JSON of the current (or last) call for download."""
        call = self._call
        if call is None:
            return None
        payload = call.to_dict()
        payload["duration"] = format_duration(call.duration_ms(self._clock()))
        payload["exported_at_ms"] = self._clock()
        return json.dumps(payload, ensure_ascii=False, indent=2)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_call(self) -> CallSession:
        """
        Begin a new call and open its transport.

        Returns the new CallSession. If the transport fails to connect the
        returned session is already FAILED.

        Raises:
            CallAlreadyActive if the previous call has not been finalized.
        """
        if self.is_open:
            raise CallAlreadyActive("a call is already in progress")

        started_at = self._clock()
        call = CallSession(call_id=new_call_id(started_at), started_at_ms=started_at)
        self._call = call
        self._ending = False

        learning = self._config.learning_enabled
        lessons = self._lessons.load() if learning else []
        self._lessons_applied = len(lessons)
        instructions = compose_operator_instructions(lessons, self._template)

        self._assembler = TranscriptAssembler(
            emit=self._on_message,
            debounce_ms=self._config.transcript_debounce_ms,
            on_partial=self._on_partial,
            clock=self._clock,
        )
        self._player = AudioPlayer(
            sink=self._sink_factory(),
            on_speaking=self._on_speaking,
            call_id=call.call_id,
        )

        setup = SetupConfig(
            model=self._config.live_model,
            voice=self._config.live_voice,
            instructions=instructions,
            input_transcription=learning,
            output_transcription=learning,
        )
        transport = self._transport_factory(setup, _CallHandler(self, call.call_id), call.call_id)
        self._transport = transport
        self._encoder = AudioEncoder(send_frame=transport.send_audio, call_id=call.call_id)

        log_event({
            "event_type": "CALL_STARTED",
            "call_id": call.call_id,
            "model": self._config.live_model,
            "learning": learning,
            "lessons_applied": self._lessons_applied,
        })
        self._signal(SignalType.CALL_CONNECTING, call_id=call.call_id)
        if lessons:
            self._signal(SignalType.LESSONS_APPLIED, count=len(lessons))

        await transport.open()
        return call

    async def end_call(self, reason: str = "local_hangup") -> CallSession | None:
        """User hangup. Idempotent; returns the finalized session."""
        call = self._call
        if call is None or call.is_finalized or self._ending:
            return call
        await self._finish(failed=False, reason=reason)
        return call

    async def hold(self, *, hangup: asyncio.Event, max_seconds: float) -> CallSession | None:
        """
        Keep the open call going until hangup is set or max_seconds pass,
        then end it. Returns early if the call closes on its own.
        """
        waited = 0.0
        while self.is_open and not hangup.is_set() and waited < max_seconds:
            try:
                await asyncio.wait_for(hangup.wait(), timeout=HOLD_POLL_INTERVAL_S)
            except asyncio.TimeoutError:
                waited += HOLD_POLL_INTERVAL_S
        return await self.end_call()

    # ------------------------------------------------------------------
    # Transport callbacks (via _CallHandler)
    # ------------------------------------------------------------------

    async def _on_active(self) -> None:
        call = self._call
        if call is None or self._ending or self._encoder is None:
            return

        call.mark_live()
        self._signal(SignalType.CALL_CONNECTED, call_id=call.call_id)

        try:
            await self._encoder.start(self._source_factory())
        except DeviceUnavailableError:
            self._signal(
                SignalType.CALL_ERROR,
                call_id=call.call_id,
                message=user_message_for_failure("device_unavailable"),
            )
            await self._finish(failed=True, reason="device_unavailable")
            return

        self._signal(SignalType.MIC_ACTIVE, active=True)

    def _on_audio(self, pcm_bytes: bytes) -> None:
        if self._player is not None and not self._ending:
            self._player.enqueue(pcm_bytes)

    def _on_operator_text(self, text: str) -> None:
        if self._assembler is not None:
            self._assembler.add_operator_fragment(text)

    def _on_caller_text(self, text: str) -> None:
        if self._assembler is not None:
            self._assembler.add_caller_fragment(text)

    def _on_turn_complete(self) -> None:
        if self._assembler is not None:
            self._assembler.complete_operator_turn()

    def _on_closing(self) -> None:
        if self._encoder is not None:
            self._encoder.stop()
        if self._assembler is not None:
            self._assembler.flush_all()

    async def _on_closed(self, reason: str) -> None:
        if not self._ending:
            await self._finish(failed=False, reason=reason)

    async def _on_failure(self, reason: str) -> None:
        if self._ending:
            return
        call = self._call
        self._signal(
            SignalType.CALL_ERROR,
            call_id=call.call_id if call else None,
            message=user_message_for_failure(reason),
        )
        await self._finish(failed=True, reason=reason)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _finish(self, *, failed: bool, reason: str) -> None:
        call = self._call
        if call is None or call.is_finalized:
            return
        self._ending = True

        ended_at = self._clock()

        if self._encoder is not None:
            self._encoder.stop()
        self._signal(SignalType.MIC_ACTIVE, active=False)
        if self._assembler is not None:
            self._assembler.flush_all()
        if self._player is not None:
            self._player.stop()
        if self._transport is not None:
            await self._transport.close(reason=reason)

        call.finalize(ended_at_ms=ended_at, failed=failed, reason=reason if failed else None)
        duration_ms = call.duration_ms()
        snapshot = call.snapshot()

        emit_metric("call_duration", duration_ms, call_id=call.call_id, details={
            "status": call.status.value,
            "messages": len(snapshot),
        })
        log_event({
            "event_type": "CALL_ENDED",
            "call_id": call.call_id,
            "status": call.status.value,
            "reason": reason,
            "duration_ms": duration_ms,
            "message_count": len(snapshot),
        })

        self._persist(call)

        self._signal(
            SignalType.CALL_ENDED,
            call_id=call.call_id,
            status=call.status.value,
            duration_ms=duration_ms,
            duration=format_duration(duration_ms),
            message_count=len(snapshot),
        )

        if (
            not failed
            and self._critic is not None
            and self._config.learning_enabled
            and len(snapshot) >= CRITIC_MIN_MESSAGES
        ):
            call_id = call.call_id
            self._critic.submit(
                CritiqueRequest(call_id=call_id, messages=snapshot),
                on_verdict=lambda verdict: self._on_verdict(call_id, verdict),
            )

    def _persist(self, call: CallSession) -> None:
        if self._transcripts is None or call.ended_at_ms is None:
            return
        record = CallRecord(
            call_id=call.call_id,
            status=call.status.value,
            started_at_ms=call.started_at_ms,
            ended_at_ms=call.ended_at_ms,
            duration_ms=call.duration_ms(),
            messages=call.snapshot(),
            failure_reason=call.failure_reason,
            created_at_ms=self._clock(),
        )
        try:
            self._transcripts.save(record)
        except (OSError, ValueError) as exc:
            log_event({
                "event_type": "CALL_RECORD_SAVE_FAILED",
                "level": "ERROR",
                "call_id": call.call_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Pipeline sinks
    # ------------------------------------------------------------------

    def _on_message(self, message: TranscriptMessage) -> None:
        call = self._call
        if call is None or call.is_finalized:
            return
        call.append(message)
        self._signal(
            SignalType.TRANSCRIPT_MESSAGE,
            call_id=call.call_id,
            message=message.to_dict(),
        )

    def _on_partial(self, role: Role, text: str) -> None:
        self._signal(SignalType.TRANSCRIPT_PARTIAL, role=role.value, text=text)

    def _on_speaking(self, speaking: bool) -> None:
        self._signal(SignalType.OPERATOR_SPEAKING, speaking=speaking)

    def _on_verdict(self, call_id: str, verdict: CriticVerdict) -> None:
        self._signal(SignalType.CRITIQUE_READY, call_id=call_id, verdict=verdict.to_dict())

    def _signal(self, signal_type: SignalType, **payload: Any) -> None:
        if self._emit_signal is not None:
            self._emit_signal({"type": signal_type.value, **payload})
