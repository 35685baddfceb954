# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.encoder import AudioEncoder
from audio.frames import AudioFrame
from audio.sources import DeviceUnavailableError, RelaySource

from fakes import BrokenSource, ListSource, settle


class FrameCollector:
    def __init__(self, accept: int | None = None) -> None:
        self.frames: list[AudioFrame] = []
        self._accept = accept

    async def __call__(self, frame: AudioFrame) -> bool:
        if self._accept is not None and len(self.frames) >= self._accept:
            return False
        self.frames.append(frame)
        return True


# ---------------------------------------------------------------------------
# encode_block
# ---------------------------------------------------------------------------

def test_each_block_becomes_exactly_one_frame() -> None:
    encoder = AudioEncoder(send_frame=FrameCollector())
    block = np.zeros(4096, dtype=np.float32)

    first = encoder.encode_block(block, 16_000)
    second = encoder.encode_block(block, 16_000)

    assert len(first.pcm_bytes) == 4096 * 2
    assert first.sample_rate_hz == 16_000
    assert (first.sequence_num, second.sequence_num) == (0, 1)


def test_capture_rate_is_resampled_to_16k() -> None:
    encoder = AudioEncoder(send_frame=FrameCollector())
    block = np.zeros(4096 * 3, dtype=np.float32)

    frame = encoder.encode_block(block, 48_000)

    assert frame.sample_count == 4096
    assert frame.sample_rate_hz == 16_000


def _tone(num_samples: int, rate_hz: int, freq_hz: float = 440.0) -> np.ndarray:
    t = np.arange(num_samples) / rate_hz
    return (0.5 * np.sin(2 * np.pi * freq_hz * t)).astype(np.float32)


def _pcm(frames: list[AudioFrame]) -> np.ndarray:
    return np.concatenate([np.frombuffer(f.pcm_bytes, dtype="<i2") for f in frames]).astype(int)


def test_blockwise_resampling_matches_one_piece() -> None:
    tone = _tone(4096 * 4, 48_000)

    blockwise = AudioEncoder(send_frame=FrameCollector())
    frames = [blockwise.encode_block(block, 48_000) for block in np.split(tone, 4)]
    whole = AudioEncoder(send_frame=FrameCollector()).encode_block(tone, 48_000)

    assert [f.sample_count for f in frames] == [1366, 1365, 1365, 1366]
    assert sum(f.sample_count for f in frames) == whole.sample_count == 5462
    assert np.abs(_pcm(frames) - _pcm([whole])).max() <= 1


def test_resampled_tone_has_no_jumps_at_frame_boundaries() -> None:
    encoder = AudioEncoder(send_frame=FrameCollector())
    samples = _pcm([encoder.encode_block(b, 48_000) for b in np.split(_tone(4096 * 4, 48_000), 4)])

    steady = samples[100:]
    # 440 Hz at half scale moves at most ~2830 LSB per 16 kHz sample
    assert np.abs(np.diff(steady)).max() < 3000
    assert np.abs(steady).max() == pytest.approx(16384, rel=0.02)


def test_rate_change_restarts_the_resampler() -> None:
    encoder = AudioEncoder(send_frame=FrameCollector())
    encoder.encode_block(np.zeros(300, dtype=np.float32), 48_000)

    frame = encoder.encode_block(np.zeros(441, dtype=np.float32), 44_100)

    assert frame.sample_count == 160


def test_frames_advertise_their_pcm_rate() -> None:
    frame = AudioEncoder(send_frame=FrameCollector()).encode_block(np.zeros(8, np.float32), 16_000)
    assert frame.mime_type == "audio/pcm;rate=16000"


def test_loud_capture_is_clamped() -> None:
    encoder = AudioEncoder(send_frame=FrameCollector())
    frame = encoder.encode_block(np.array([4.0, -4.0], dtype=np.float32), 16_000)
    assert np.frombuffer(frame.pcm_bytes, dtype="<i2").tolist() == [32767, -32768]


# ---------------------------------------------------------------------------
# Pump lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_pump_hands_frames_to_transport_in_order() -> None:
    collector = FrameCollector()
    blocks = [np.full(256, i / 10, dtype=np.float32) for i in range(3)]
    encoder = AudioEncoder(send_frame=collector)

    await encoder.start(ListSource(blocks))
    await settle()

    assert [f.sequence_num for f in collector.frames] == [0, 1, 2]
    assert encoder.frames_encoded == 3


@pytest.mark.asyncio
async def test_device_failure_is_surfaced_and_nothing_is_sent() -> None:
    collector = FrameCollector()
    encoder = AudioEncoder(send_frame=collector)

    with pytest.raises(DeviceUnavailableError):
        await encoder.start(BrokenSource())

    await settle()
    assert collector.frames == []
    assert not encoder.is_running


@pytest.mark.asyncio
async def test_refused_frame_stops_the_pump() -> None:
    collector = FrameCollector(accept=1)
    blocks = [np.zeros(128, dtype=np.float32) for _ in range(5)]
    encoder = AudioEncoder(send_frame=collector)

    await encoder.start(ListSource(blocks))
    await settle()

    assert len(collector.frames) == 1
    assert not encoder.is_running


@pytest.mark.asyncio
async def test_stop_is_synchronous_and_releases_the_source() -> None:
    collector = FrameCollector()
    source = RelaySource(16_000)
    encoder = AudioEncoder(send_frame=collector)

    await encoder.start(source)
    source.push(np.zeros(64, dtype=np.float32))
    await settle()

    encoder.stop()
    encoder.stop()

    assert not source.is_open
    assert not source.push(np.zeros(64, dtype=np.float32))
    await settle()
    assert len(collector.frames) == 1
    assert not encoder.is_running
