# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
import json

import pytest

from audio.frames import AudioFrame
from protocol.live import (
    AudioChunk,
    CallerTranscription,
    FragmentError,
    MalformedMessage,
    OperatorText,
    OperatorTranscription,
    SetupComplete,
    SetupConfig,
    TurnComplete,
    build_audio_message,
    build_setup_message,
    parse_server_message,
)


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------

def test_setup_message_carries_model_voice_instructions_and_flags() -> None:
    msg = build_setup_message(SetupConfig(
        model="models/x",
        voice="Aoede",
        instructions="Be kind.",
    ))

    setup = msg["setup"]
    assert setup["model"] == "models/x"
    assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
    assert (
        setup["generationConfig"]["speechConfig"]["voiceConfig"]
        ["prebuiltVoiceConfig"]["voiceName"] == "Aoede"
    )
    assert setup["systemInstruction"] == {"parts": [{"text": "Be kind."}]}
    assert setup["inputAudioTranscription"] == {}
    assert setup["outputAudioTranscription"] == {}


def test_transcription_flags_are_omitted_when_disabled() -> None:
    msg = build_setup_message(SetupConfig(
        model="m",
        voice="v",
        instructions="i",
        input_transcription=False,
        output_transcription=False,
    ))
    assert "inputAudioTranscription" not in msg["setup"]
    assert "outputAudioTranscription" not in msg["setup"]


def test_audio_message_is_base64_pcm_with_rate() -> None:
    frame = AudioFrame(pcm_bytes=b"\x01\x02\x03\x04", sample_rate_hz=16_000, sequence_num=7, ts_ms=0)
    chunk = build_audio_message(frame)["realtimeInput"]["mediaChunks"][0]

    assert chunk["mimeType"] == "audio/pcm;rate=16000"
    assert base64.b64decode(chunk["data"]) == b"\x01\x02\x03\x04"


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

def test_setup_complete() -> None:
    events = parse_server_message('{"setupComplete": {}}')
    assert len(events) == 1
    assert isinstance(events[0], SetupComplete)


def test_combined_frame_is_demultiplexed_with_turn_complete_last() -> None:
    audio = base64.b64encode(b"\x00\x01" * 4).decode()
    raw = json.dumps({
        "serverContent": {
            "turnComplete": True,
            "outputTranscription": {"text": " are you safe?"},
            "inputTranscription": {"text": "my roof"},
            "modelTurn": {"parts": [
                {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": audio}},
                {"text": "thinking"},
            ]},
        }
    })

    events = parse_server_message(raw)

    assert [type(e) for e in events] == [
        AudioChunk,
        OperatorText,
        CallerTranscription,
        OperatorTranscription,
        TurnComplete,
    ]
    assert events[0].pcm_bytes == b"\x00\x01" * 4
    assert events[3].text == " are you safe?"


def test_bad_audio_part_is_isolated() -> None:
    good = base64.b64encode(b"\x10\x00").decode()
    raw = json.dumps({
        "serverContent": {
            "modelTurn": {"parts": [
                {"inlineData": {"data": "!!not-base64!!"}},
                {"inlineData": {"data": good}},
            ]},
        }
    })

    events = parse_server_message(raw)

    assert isinstance(events[0], FragmentError)
    assert isinstance(events[1], AudioChunk)
    assert events[1].pcm_bytes == b"\x10\x00"


def test_binary_frames_are_accepted() -> None:
    events = parse_server_message(b'{"serverContent": {"turnComplete": true}}')
    assert [type(e) for e in events] == [TurnComplete]


def test_empty_transcriptions_produce_no_events() -> None:
    raw = '{"serverContent": {"inputTranscription": {"text": ""}, "outputTranscription": {}}}'
    assert parse_server_message(raw) == []


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", b"\xff\xfe"])
def test_malformed_frames_raise(raw: str | bytes) -> None:
    with pytest.raises(MalformedMessage):
        parse_server_message(raw)
