"""Gemini tutor adapter (google-genai)."""
from __future__ import annotations

import asyncio
from typing import Any, Sequence

from google import genai
from google.genai import types

from adapters.errors import UpstreamError
from adapters.llm.base import TutorModel
from adapters.llm.parsing import (
    InteractiveLesson,
    TutorReply,
    parse_interactive_lesson,
    split_structured_reply,
)
from adapters.llm.prompts import (
    CHAT_SYSTEM_PROMPT_V1,
    CONTINUE_LESSON_PROMPT_V1,
    FOLLOW_UP_PROMPT_V1,
    INTERACTIVE_LESSON_PROMPT_V1,
    TUTOR_PERSONA_V1,
)
from config import AppConfig
from constants import UPSTREAM_TIMEOUT_S
from context.conversation import Attachment, Turn
from observability.metrics import timed


DEFAULT_LESSON_SECONDS = 60

INTERACTIVE_LESSON_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "voice_script_ssml": types.Schema(type=types.Type.STRING),
        "interactive_prompts": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "time_in_seconds": types.Schema(type=types.Type.NUMBER),
                    "question": types.Schema(type=types.Type.STRING),
                },
                required=["time_in_seconds", "question"],
            ),
        ),
    },
    required=["voice_script_ssml", "interactive_prompts"],
)


def build_chat_contents(
    text: str,
    *,
    attachment: Attachment | None = None,
    history: Sequence[Turn] = (),
) -> list[types.Content]:
    """History turns in order, then the new user message (file part first)."""
    contents = [
        types.Content(role=turn.role, parts=[types.Part.from_text(text=turn.text)])
        for turn in history
    ]

    parts = []
    if attachment is not None:
        parts.append(types.Part.from_bytes(data=attachment.data, mime_type=attachment.mime_type))
    parts.append(types.Part.from_text(text=text))
    contents.append(types.Content(role="user", parts=parts))
    return contents


class GeminiTutorClient(TutorModel):
    """
    Concrete tutor model backed by generate_content.

    Design notes:
    - Stateless between calls; history is passed in by the caller.
    - Every request is bounded by timeout_s.
    - No retries: one request per operation.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        timeout_s: float = UPSTREAM_TIMEOUT_S,
        session_id: str | None = None,
        lesson_seconds: int = DEFAULT_LESSON_SECONDS,
    ) -> None:
        """
        Args:
            client:
                genai.Client (or anything exposing aio.models.generate_content).
            model:
                Model identifier, e.g. "gemini-2.5-flash".
        """
        self._client = client
        self._model = model
        self._timeout_s = timeout_s
        self._session_id = session_id
        self._lesson_seconds = lesson_seconds

    @classmethod
    def from_config(cls, config: AppConfig, *, client: Any = None) -> GeminiTutorClient:
        if client is None:
            client = genai.Client(api_key=config.require_api_key())
        return cls(client=client, model=config.chat_model, timeout_s=config.upstream_timeout_s)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(
        self,
        text: str,
        *,
        attachment: Attachment | None = None,
        history: Sequence[Turn] = (),
    ) -> TutorReply:
        contents = build_chat_contents(text, attachment=attachment, history=history)
        raw = await self._generate(
            "chat",
            contents,
            types.GenerateContentConfig(system_instruction=CHAT_SYSTEM_PROMPT_V1),
        )
        return split_structured_reply(raw)

    async def interactive_lesson(self, topic: str) -> InteractiveLesson:
        prompt = INTERACTIVE_LESSON_PROMPT_V1.format(
            topic=topic, target_seconds=self._lesson_seconds
        )
        raw = await self._generate("interactive_lesson", prompt, self._lesson_config())
        return parse_interactive_lesson(raw)

    async def follow_up_script(self, question: str, answer: str) -> str:
        prompt = FOLLOW_UP_PROMPT_V1.format(question=question, answer=answer)
        raw = await self._generate(
            "follow_up",
            prompt,
            types.GenerateContentConfig(system_instruction=TUTOR_PERSONA_V1),
        )
        return raw.strip()

    async def continue_lesson(self, topic: str, question: str, answer: str) -> InteractiveLesson:
        prompt = CONTINUE_LESSON_PROMPT_V1.format(topic=topic, question=question, answer=answer)
        raw = await self._generate("continue_lesson", prompt, self._lesson_config())
        return parse_interactive_lesson(raw)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lesson_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=TUTOR_PERSONA_V1,
            response_mime_type="application/json",
            response_schema=INTERACTIVE_LESSON_SCHEMA,
        )

    async def _generate(
        self,
        operation: str,
        contents: Any,
        config: types.GenerateContentConfig,
    ) -> str:
        with timed(
            f"gemini_{operation}",
            session_id=self._session_id,
            details={"model": self._model},
        ) as extra:
            try:
                response = await asyncio.wait_for(
                    self._client.aio.models.generate_content(
                        model=self._model,
                        contents=contents,
                        config=config,
                    ),
                    timeout=self._timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise UpstreamError(operation, f"timeout after {self._timeout_s}s") from exc
            except Exception as exc:  # pylint: disable=broad-exception-caught
                raise UpstreamError(operation, repr(exc)) from exc

            text = response.text
            if not text or not text.strip():
                raise UpstreamError(operation, "empty response")

            extra["chars"] = len(text)
            return text
