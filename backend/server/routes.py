"""
Route registration for the tutor API.

Responsibilities:
- Define HTTP endpoints (chat, speech, lesson, follow-up)
- Pull dependencies from app.state
- Map upstream/format failures to 502 with the apology text

Audio is returned as base64 PCM16 mono; the browser plays it through its
own gapless queue.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from adapters.errors import UpstreamError
from adapters.llm.base import TutorModel
from adapters.tts.base import SpeechSynthesizer
from audio.pcm import FormatError, encode_base64
from constants import APOLOGY_TEXT, OUTPUT_SAMPLE_RATE_HZ
from context.conversation import Attachment
from observability.logger import log_event
from session.gateway import TutorGateway


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------

class SpeechRequest(BaseModel):
    ssml: str = Field(min_length=1)


class LessonRequest(BaseModel):
    topic: str = Field(min_length=1)


class FollowUpRequest(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


def _audio_payload(pcm: bytes) -> dict[str, Any]:
    return {"audio_base64": encode_base64(pcm), "sample_rate_hz": OUTPUT_SAMPLE_RATE_HZ}


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.exception_handler(UpstreamError)
    @app.exception_handler(FormatError)
    async def upstream_failure(request: Request, exc: Exception) -> JSONResponse:  # pyright: ignore[reportUnusedFunction]
        log_event({
            "event_type": "HTTP_UPSTREAM_FAILURE",
            "level": "ERROR",
            "path": request.url.path,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        return JSONResponse(status_code=502, content={"detail": APOLOGY_TEXT})

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.post("/chat")
    async def chat(  # pyright: ignore[reportUnusedFunction]
        text: str = Form(...),
        session_id: Optional[str] = Form(None),
        file: Optional[UploadFile] = File(None),
    ) -> dict[str, Any]:
        gateway = await _chat_session(app, session_id)

        attachment = None
        if file is not None:
            attachment = Attachment(
                data=await file.read(),
                mime_type=file.content_type or "application/octet-stream",
                name=file.filename,
            )

        reply = await gateway.chat(text, attachment)
        return {
            "session_id": gateway.session_id,
            "text": reply.text,
            "structured_response": reply.lesson.to_dict() if reply.lesson else None,
        }

    @app.post("/speech")
    async def speech(body: SpeechRequest) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        synth: SpeechSynthesizer = app.state.speech
        return _audio_payload(await synth.synthesize(body.ssml))

    @app.post("/lesson")
    async def lesson(body: LessonRequest) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        model: TutorModel = app.state.model
        synth: SpeechSynthesizer = app.state.speech

        generated = await model.interactive_lesson(body.topic)
        pcm = await synth.synthesize(generated.voice_script_ssml)
        return {**generated.to_dict(), **_audio_payload(pcm)}

    @app.post("/lesson/follow-up")
    async def follow_up(body: FollowUpRequest) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        model: TutorModel = app.state.model
        synth: SpeechSynthesizer = app.state.speech

        script = await model.follow_up_script(body.question, body.answer)
        pcm = await synth.synthesize(script)
        return {"text": script, **_audio_payload(pcm)}


async def _chat_session(app: FastAPI, session_id: str | None) -> TutorGateway:
    """
    Chat history is kept per session_id in memory; unknown ids start fresh.

    Sessions are held in least-recently-used order. Once the count passes
    app.state.max_chat_sessions the oldest gateway is closed and dropped,
    so a returning client with that id starts a new history.
    """
    sessions: OrderedDict[str, TutorGateway] = app.state.chat_sessions
    if session_id and session_id in sessions:
        sessions.move_to_end(session_id)
        return sessions[session_id]

    gateway = TutorGateway(
        config=app.state.config,
        model=app.state.model,
        speech=app.state.speech,
        session_id=session_id or None,
    )
    sessions[gateway.session_id] = gateway

    while len(sessions) > app.state.max_chat_sessions:
        evicted_id, evicted = sessions.popitem(last=False)
        await evicted.close()
        log_event({
            "event_type": "CHAT_SESSION_EVICTED",
            "session_id": evicted_id,
            "active_sessions": len(sessions),
        })
    return gateway
