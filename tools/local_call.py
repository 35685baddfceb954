"""
Place one hotline call from the local microphone to the local speaker.

    python tools/local_call.py --mode beta --seconds 120

Press Ctrl+C to hang up; the tool then waits for the critique before exiting.
The transcript, lesson merge and call record go to the same DATA_DIR the
server uses. Unix only (the hang-up relies on a SIGINT loop handler).
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
from pathlib import Path

from dotenv import load_dotenv
from openai import AsyncOpenAI

from adapters.live.base import LiveSessionHandler
from adapters.live.transport import LiveTransport, build_live_url
from adapters.llm.critic_client import ChatCompletionCriticClient
from audio.devices import SoundDeviceSink, SoundDeviceSource
from config import AppConfig
from constants import LESSONS_FILENAME, LIVE_WS_URL, TRANSCRIPTS_DIRNAME
from feedback.critic import Critic
from feedback.lessons import JsonFileLessonStore
from observability import logger
from protocol.live import SetupConfig
from server.app import build_llm_client
from session.controller import CallController
from storage.transcripts import JsonTranscriptStore


def _print_signal(payload: dict) -> None:
    kind = payload.get("type")
    if kind == "TRANSCRIPT_MESSAGE":
        message = payload["message"]
        print(f"{message['role'].upper()}: {message['text']}")
    elif kind in ("CALL_CONNECTED", "CALL_ENDED", "CALL_ERROR", "CRITIQUE_READY", "LESSONS_APPLIED"):
        print(f"[{kind}] {payload}")


async def run(args: argparse.Namespace) -> None:
    if args.mode:
        os.environ["LIVE_MODE"] = args.mode
    config = AppConfig.load_from_env()
    logger.configure(level=args.log_level, json_output=config.enable_json_logs)

    data_dir = Path(config.data_dir)
    lesson_store = JsonFileLessonStore(data_dir / LESSONS_FILENAME, cap=config.lesson_retention_cap)
    transcript_store = JsonTranscriptStore(data_dir / TRANSCRIPTS_DIRNAME)

    critic = None
    llm_client: AsyncOpenAI | None = build_llm_client(config)
    if llm_client is not None and config.learning_enabled:
        critic = Critic(
            client=ChatCompletionCriticClient(client=llm_client, model=config.critic_model),
            lesson_store=lesson_store,
            transcript_store=transcript_store,
            timeout_s=config.critic_timeout_s,
        )

    def make_transport(setup: SetupConfig, handler: LiveSessionHandler, call_id: str) -> LiveTransport:
        return LiveTransport(
            url=build_live_url(LIVE_WS_URL, config.gemini_api_key),
            setup=setup,
            handler=handler,
            call_id=call_id,
            handshake_timeout_s=config.handshake_timeout_s,
        )

    controller = CallController(
        config=config,
        lesson_store=lesson_store,
        transport_factory=make_transport,
        source_factory=lambda: SoundDeviceSource(device=args.input_device),
        sink_factory=lambda: SoundDeviceSink(device=args.output_device),
        emit_signal=_print_signal,
        critic=critic,
        transcript_store=transcript_store,
    )

    # Ctrl+C hangs up instead of cancelling the run, so the critique below
    # still gets to finish
    hangup = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, hangup.set)
    try:
        call = await controller.start_call()
        await controller.hold(hangup=hangup, max_seconds=args.seconds)
        print(f"call {call.call_id} finished: {controller.metadata()}")
        if critic is not None:
            print("waiting for critique...")
            await critic.drain()
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _device_arg(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Local microphone/speaker hotline call")
    parser.add_argument("--mode", choices=("beta", "stable"), default=None)
    parser.add_argument("--seconds", type=float, default=300.0, help="hang up after N seconds")
    parser.add_argument("--input-device", type=_device_arg, default=None)
    parser.add_argument("--output-device", type=_device_arg, default=None)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
