# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np

from audio.frames import AudioFrame
from audio.pcm import (
    b64decode_pcm,
    b64encode_pcm,
    float32_to_pcm16le,
    float32le_bytes_to_array,
    pcm16_duration_s,
    pcm16le_to_float32,
)


def _as_i16(pcm: bytes) -> list[int]:
    return np.frombuffer(pcm, dtype="<i2").tolist()


def test_rails_map_to_int16_extremes() -> None:
    pcm = float32_to_pcm16le(np.array([-1.0, 0.0, 1.0], dtype=np.float32))
    assert _as_i16(pcm) == [-32768, 0, 32767]


def test_out_of_range_samples_saturate_instead_of_wrapping() -> None:
    pcm = float32_to_pcm16le(np.array([-3.5, 1.7, 2.0], dtype=np.float32))
    assert _as_i16(pcm) == [-32768, 32767, 32767]


def test_scaling_is_asymmetric() -> None:
    pcm = float32_to_pcm16le(np.array([-0.5, 0.5], dtype=np.float32))
    assert _as_i16(pcm) == [-16384, 16383]


def test_output_is_little_endian_two_bytes_per_sample() -> None:
    pcm = float32_to_pcm16le(np.array([1.0], dtype=np.float32))
    assert pcm == b"\xff\x7f"


def test_pcm16_to_float_drops_dangling_byte() -> None:
    samples = pcm16le_to_float32(b"\x00\x80\xff\x7f\x01")
    assert samples.dtype == np.float32
    assert samples.tolist() == [-1.0, 32767 / 32768.0]


def test_float32_bytes_ignore_partial_trailing_sample() -> None:
    raw = np.array([0.25, -0.5], dtype="<f4").tobytes() + b"\x00\x01"
    assert float32le_bytes_to_array(raw).tolist() == [0.25, -0.5]


def test_base64_helpers_and_duration() -> None:
    pcm = b"\x01\x00" * 2400
    assert b64decode_pcm(b64encode_pcm(pcm)) == pcm
    assert pcm16_duration_s(pcm, 24_000) == 0.1


def test_audio_frame_properties() -> None:
    frame = AudioFrame(pcm_bytes=b"\x00\x00" * 1600, sample_rate_hz=16_000, sequence_num=0, ts_ms=0)
    assert frame.sample_count == 1600
    assert frame.duration_s == 0.1
    assert frame.mime_type == "audio/pcm;rate=16000"
