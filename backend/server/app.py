"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Initialize shared resources (lesson store, call records, critic)
- Register routes
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from adapters.live.transport import ConnectFn
from adapters.llm.base import CriticClient
from adapters.llm.critic_client import ChatCompletionCriticClient
from config import AppConfig
from constants import LESSONS_FILENAME, TRANSCRIPTS_DIRNAME
from feedback.critic import Critic
from feedback.lessons import JsonFileLessonStore
from observability import logger
from observability.logger import log_event
from storage.transcripts import JsonTranscriptStore

from server.routes import register_routes

_PROVIDER_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "anthropic": "https://api.anthropic.com/v1/",
}


def create_app(
    config: AppConfig | None = None,
    *,
    critic_client: CriticClient | None = None,
    live_connect: ConnectFn | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    critic_client / live_connect override the network-facing pieces
    (tests, local tooling). Everything else comes from config.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(level=config.log_level, json_output=config.enable_json_logs)

    app = FastAPI(title="Disaster Hotline Voice API")

    app.state.config = config
    app.state.live_connect = live_connect

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    data_dir = Path(config.data_dir)
    app.state.lesson_store = JsonFileLessonStore(
        data_dir / LESSONS_FILENAME,
        cap=config.lesson_retention_cap,
    )
    app.state.transcript_store = JsonTranscriptStore(data_dir / TRANSCRIPTS_DIRNAME)

    if not config.gemini_api_key:
        log_event({
            "event_type": "LIVE_API_KEY_MISSING",
            "level": "WARNING",
            "message": "GEMINI_API_KEY not set; calls will fail to connect",
        })

    # One critic per process; calls on every connection share it
    if critic_client is None and config.learning_enabled:
        llm_client = build_llm_client(config)
        if llm_client is not None:
            critic_client = ChatCompletionCriticClient(
                client=llm_client,
                model=config.critic_model,
            )

    app.state.critic = None
    if critic_client is not None:
        app.state.critic = Critic(
            client=critic_client,
            lesson_store=app.state.lesson_store,
            transcript_store=app.state.transcript_store,
            timeout_s=config.critic_timeout_s,
        )
    else:
        log_event({
            "event_type": "CRITIC_DISABLED",
            "live_mode": config.live_mode,
            "critic_provider": config.critic_provider,
        })

    # Routes
    register_routes(app)

    return app


def build_llm_client(config: AppConfig) -> AsyncOpenAI | None:
    """
    Build the critique client for the configured provider.

    Returns None when the provider's API key is not configured.
    """
    provider = config.critic_provider
    api_key = {
        "openai": config.openai_api_key,
        "groq": config.groq_api_key,
        "anthropic": config.anthropic_api_key,
    }.get(provider)

    if not api_key:
        return None

    base_url = _PROVIDER_BASE_URLS.get(provider)
    if base_url is not None:
        return AsyncOpenAI(api_key=api_key, base_url=base_url)

    return AsyncOpenAI(api_key=api_key)
