"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Initialize shared resources (one genai client, tutor model, synthesizer)
- Register routes and upstream error mapping
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from google import genai

from adapters.llm.base import TutorModel
from adapters.llm.gemini import GeminiTutorClient
from adapters.tts.base import SpeechSynthesizer
from adapters.tts.gemini_tts import GeminiSpeechSynthesizer
from config import AppConfig
from constants import MAX_CHAT_SESSIONS
from observability import logger

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    model: TutorModel | None = None,
    speech: SpeechSynthesizer | None = None,
    max_chat_sessions: int = MAX_CHAT_SESSIONS,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    model / speech are injectable so tests (and alternative providers) can
    run the API without network access. max_chat_sessions bounds the
    in-memory chat histories (least recently used are dropped first).
    """
    if max_chat_sessions < 1:
        raise ValueError("max_chat_sessions must be >= 1")

    config = config or AppConfig.load_from_env()
    logger.configure(level=config.log_level, enabled=config.enable_json_logs)

    app = FastAPI(title="JB AI Tutor API")
    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # One provider client per process
    client: Any = None
    if model is None or speech is None:
        client = genai.Client(api_key=config.require_api_key())

    app.state.model = model or GeminiTutorClient.from_config(config, client=client)
    app.state.speech = speech or GeminiSpeechSynthesizer.from_config(config, client=client)
    app.state.chat_sessions = OrderedDict()
    app.state.max_chat_sessions = max_chat_sessions

    # Routes
    register_routes(app)

    return app
