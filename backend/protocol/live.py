# backend/protocol/live.py
"""
JSON wire format for the remote dialogue service (Gemini Live, BidiGenerateContent).

Outbound:
- Setup (sent exactly once, first frame on the socket):
    {"setup": {"model", "generationConfig", "systemInstruction", "tools",
               "inputAudioTranscription"?, "outputAudioTranscription"?}}
- Audio:
    {"realtimeInput": {"mediaChunks": [{"mimeType": "audio/pcm;rate=16000",
                                         "data": <base64 PCM16>}]}}

Inbound (one frame may carry several facts):
- {"setupComplete": {}}
- {"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data"}}, {"text"}]},
                     "inputTranscription": {"text"},
                     "outputTranscription": {"text"},
                     "turnComplete": true}}

Usage example:

    for event in parse_server_message(raw):
        if isinstance(event, AudioChunk):
            player.enqueue(event.pcm_bytes)

Rules:
- Pure functions, no I/O.
- A frame that is not a JSON object raises MalformedMessage.
- A bad audio part inside an otherwise valid frame yields FragmentError and
  the remaining parts are still delivered.
- TurnComplete is always the last event of its frame so operator text from
  the same frame lands before the turn flush.
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from audio.frames import AudioFrame
from audio.pcm import b64decode_pcm, b64encode_pcm
from constants import LIVE_RESPONSE_MODALITIES


# -------------------------
# Exceptions
# -------------------------

class LiveProtocolError(Exception):
    """Base class for remote dialogue wire-format errors."""


class MalformedMessage(LiveProtocolError):
    """
    Raised when an inbound frame is not valid UTF-8 JSON or not a JSON object.

    During the handshake this is fatal; once active the frame is dropped.
    """


# -------------------------
# Outbound
# -------------------------

@dataclass(frozen=True)
class SetupConfig:
    """Everything the setup frame carries. Fixed for the lifetime of a call."""
    model: str
    voice: str
    instructions: str
    input_transcription: bool = True
    output_transcription: bool = True


def build_setup_message(config: SetupConfig) -> dict[str, Any]:
    setup: dict[str, Any] = {
        "model": config.model,
        "generationConfig": {
            "responseModalities": list(LIVE_RESPONSE_MODALITIES),
            "speechConfig": {
                "voiceConfig": {
                    "prebuiltVoiceConfig": {"voiceName": config.voice},
                },
            },
        },
        "systemInstruction": {"parts": [{"text": config.instructions}]},
        "tools": [],
    }
    if config.input_transcription:
        setup["inputAudioTranscription"] = {}
    if config.output_transcription:
        setup["outputAudioTranscription"] = {}
    return {"setup": setup}


def build_audio_message(frame: AudioFrame) -> dict[str, Any]:
    return {
        "realtimeInput": {
            "mediaChunks": [
                {
                    "mimeType": frame.mime_type,
                    "data": b64encode_pcm(frame.pcm_bytes),
                }
            ]
        }
    }


def encode_message(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


# -------------------------
# Inbound events
# -------------------------

class LiveEventType(str, Enum):
    SETUP_COMPLETE = "SETUP_COMPLETE"
    AUDIO_CHUNK = "AUDIO_CHUNK"
    OPERATOR_TEXT = "OPERATOR_TEXT"
    OPERATOR_TRANSCRIPTION = "OPERATOR_TRANSCRIPTION"
    CALLER_TRANSCRIPTION = "CALLER_TRANSCRIPTION"
    TURN_COMPLETE = "TURN_COMPLETE"
    FRAGMENT_ERROR = "FRAGMENT_ERROR"


@dataclass(frozen=True)
class LiveEvent:
    event_type: LiveEventType


@dataclass(frozen=True)
class SetupComplete(LiveEvent):
    pass


@dataclass(frozen=True)
class AudioChunk(LiveEvent):
    pcm_bytes: bytes


@dataclass(frozen=True)
class OperatorText(LiveEvent):
    """Raw model text part (only meaningful when output transcription is off)."""
    text: str


@dataclass(frozen=True)
class OperatorTranscription(LiveEvent):
    text: str


@dataclass(frozen=True)
class CallerTranscription(LiveEvent):
    text: str


@dataclass(frozen=True)
class TurnComplete(LiveEvent):
    pass


@dataclass(frozen=True)
class FragmentError(LiveEvent):
    reason: str


# -------------------------
# Inbound parsing
# -------------------------

def _load_json_object(raw: str | bytes) -> dict[str, Any]:
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedMessage(f"invalid JSON frame: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedMessage(f"expected JSON object, got {type(data).__name__}")
    return data


def _text_of(section: Any) -> str | None:
    if isinstance(section, dict):
        text = section.get("text")
        if isinstance(text, str) and text:
            return text
    return None


def parse_server_message(raw: str | bytes) -> list[LiveEvent]:
    """
    Demultiplex one inbound frame into ordered events.

    Raises:
        MalformedMessage if the frame is not a JSON object.
    """
    data = _load_json_object(raw)
    events: list[LiveEvent] = []

    if "setupComplete" in data:
        events.append(SetupComplete(event_type=LiveEventType.SETUP_COMPLETE))

    content = data.get("serverContent")
    if not isinstance(content, dict):
        return events

    model_turn = content.get("modelTurn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    for part in parts if isinstance(parts, list) else []:
        if not isinstance(part, dict):
            continue

        inline = part.get("inlineData")
        if isinstance(inline, dict) and "data" in inline:
            try:
                pcm = b64decode_pcm(str(inline["data"]))
            except (binascii.Error, ValueError) as exc:
                events.append(FragmentError(
                    event_type=LiveEventType.FRAGMENT_ERROR,
                    reason=f"bad audio payload: {exc}",
                ))
            else:
                events.append(AudioChunk(
                    event_type=LiveEventType.AUDIO_CHUNK,
                    pcm_bytes=pcm,
                ))

        text = part.get("text")
        if isinstance(text, str) and text:
            events.append(OperatorText(event_type=LiveEventType.OPERATOR_TEXT, text=text))

    caller_text = _text_of(content.get("inputTranscription"))
    if caller_text is not None:
        events.append(CallerTranscription(
            event_type=LiveEventType.CALLER_TRANSCRIPTION,
            text=caller_text,
        ))

    operator_text = _text_of(content.get("outputTranscription"))
    if operator_text is not None:
        events.append(OperatorTranscription(
            event_type=LiveEventType.OPERATOR_TRANSCRIPTION,
            text=operator_text,
        ))

    if content.get("turnComplete") is True:
        events.append(TurnComplete(event_type=LiveEventType.TURN_COMPLETE))

    return events
