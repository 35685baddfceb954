# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
import json
from typing import Any

import numpy as np
import pytest

from feedback.lessons import InMemoryLessonStore
from session.gateway import CallGateway

from fakes import FakeLiveSocket, connect_to, make_config, settle


def _drain(gateway: CallGateway) -> list[Any]:
    items = []
    while not gateway.outbound.empty():
        items.append(gateway.outbound.get_nowait())
    return items


def _json_types(items: list[Any]) -> list[str]:
    return [item["type"] for item in items if isinstance(item, dict)]


async def _live_gateway(socket: FakeLiveSocket, urls: list[str] | None = None) -> CallGateway:
    gateway = CallGateway(
        config=make_config(),
        lesson_store=InMemoryLessonStore(),
        live_connect=connect_to(socket, urls),
    )
    await gateway.on_json_message(json.dumps({"type": "START_CALL", "sample_rate": 16_000}))
    socket.push({"setupComplete": {}})
    await settle()
    return gateway


@pytest.mark.asyncio
async def test_start_call_connects_with_api_key_and_goes_live() -> None:
    socket, urls = FakeLiveSocket(), []
    gateway = await _live_gateway(socket, urls)

    assert urls[0].endswith("?key=test-key")
    assert _json_types(_drain(gateway)) == ["CALL_CONNECTING", "CALL_CONNECTED", "MIC_ACTIVE"]
    assert gateway.controller.is_live
    await gateway.on_ws_disconnect("test")


@pytest.mark.asyncio
async def test_binary_microphone_blocks_reach_the_remote_service() -> None:
    socket = FakeLiveSocket()
    gateway = await _live_gateway(socket)

    await gateway.on_binary_message(np.zeros(1024, dtype="<f4").tobytes())
    await settle()

    chunk = socket.sent_json()[1]["realtimeInput"]["mediaChunks"][0]
    assert len(base64.b64decode(chunk["data"])) == 1024 * 2
    await gateway.on_ws_disconnect("test")


@pytest.mark.asyncio
async def test_remote_audio_is_relayed_as_float32() -> None:
    socket = FakeLiveSocket()
    gateway = await _live_gateway(socket)
    _drain(gateway)

    pcm = np.array([16384, -16384], dtype="<i2").tobytes()
    socket.push({"serverContent": {"modelTurn": {"parts": [
        {"inlineData": {"data": base64.b64encode(pcm).decode()}},
    ]}}})
    await settle()

    playback = [item for item in _drain(gateway) if isinstance(item, bytes)]
    assert np.frombuffer(playback[0], dtype="<f4").tolist() == [0.5, -0.5]
    await gateway.on_ws_disconnect("test")


@pytest.mark.asyncio
async def test_microphone_blocks_outside_a_live_call_are_dropped() -> None:
    gateway = CallGateway(config=make_config(), lesson_store=InMemoryLessonStore())

    await gateway.on_binary_message(np.zeros(16, dtype="<f4").tobytes())

    assert _drain(gateway) == []


@pytest.mark.asyncio
async def test_second_start_is_rejected_while_a_call_is_open() -> None:
    socket = FakeLiveSocket()
    gateway = await _live_gateway(socket)
    _drain(gateway)

    await gateway.on_json_message(json.dumps({"type": "START_CALL"}))

    assert _drain(gateway)[0] == {"type": "ERROR", "code": "CALL_ALREADY_ACTIVE", "detail": None}
    await gateway.on_ws_disconnect("test")


@pytest.mark.asyncio
async def test_end_call_and_export() -> None:
    socket = FakeLiveSocket()
    gateway = await _live_gateway(socket)

    await gateway.on_json_message(json.dumps({"type": "END_CALL"}))
    await gateway.on_json_message(json.dumps({"type": "EXPORT_CALL"}))

    items = _drain(gateway)
    assert "CALL_ENDED" in _json_types(items)
    exported = json.loads(items[-1]["json"])
    assert exported["status"] == "ended"
    assert socket.closed
