# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
from typing import Any, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from adapters.errors import UpstreamError
from adapters.llm.base import TutorModel
from adapters.llm.parsing import (
    InteractiveLesson,
    LessonFormatError,
    LessonStep,
    StructuredLesson,
    TutorReply,
)
from adapters.tts.base import SpeechSynthesizer
from config import AppConfig
from constants import APOLOGY_TEXT, OUTPUT_SAMPLE_RATE_HZ
from context.conversation import Attachment, Turn
from lesson.checkpoints import Checkpoint
from server.app import create_app


CONFIG = AppConfig(
    env="test",
    log_level="DEBUG",
    enable_json_logs=True,
    gemini_api_key=None,
    chat_model="chat",
    tts_model="tts",
    live_model="live",
    voice_name="Kore",
)

PCM = b"\x01\x00\x02\x00"


class FakeModel(TutorModel):
    def __init__(self) -> None:
        self.fail_with: Optional[Exception] = None
        self.histories: list[tuple[Turn, ...]] = []
        self.attachments: list[Optional[Attachment]] = []

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def chat(
        self,
        text: str,
        *,
        attachment: Optional[Attachment] = None,
        history: Sequence[Turn] = (),
    ) -> TutorReply:
        self._maybe_fail()
        self.histories.append(tuple(history))
        self.attachments.append(attachment)
        lesson = None
        if text == "teach":
            lesson = StructuredLesson(
                lesson_title="Fractions",
                lesson_steps=(LessonStep("Half is 1/2.", "What is half of 4?"),),
                real_life_example="Sharing a roti.",
                motivational_quote="You can do it!",
                voice_script_ssml="<speak>Fractions</speak>",
            )
        return TutorReply(text=f"echo: {text}", lesson=lesson)

    async def interactive_lesson(self, topic: str) -> InteractiveLesson:
        self._maybe_fail()
        return InteractiveLesson("<speak>Gravity</speak>", (Checkpoint(4.0, "Why?"),))

    async def follow_up_script(self, question: str, answer: str) -> str:
        self._maybe_fail()
        return f"<speak>{answer} is right</speak>"

    async def continue_lesson(self, topic: str, question: str, answer: str) -> InteractiveLesson:
        return InteractiveLesson("<speak>more</speak>")


class FakeSpeech(SpeechSynthesizer):
    async def synthesize(self, ssml: str, *, voice: Optional[str] = None) -> bytes:
        return PCM


@pytest.fixture
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def client(model: FakeModel) -> TestClient:
    return TestClient(create_app(CONFIG, model=model, speech=FakeSpeech()))


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


# ---------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------

def test_chat_keeps_history_per_session(client: TestClient, model: FakeModel) -> None:
    first = client.post("/chat", data={"text": "hi"}).json()
    assert first["text"] == "echo: hi"
    assert first["structured_response"] is None

    second = client.post("/chat", data={"text": "more", "session_id": first["session_id"]}).json()

    assert second["session_id"] == first["session_id"]
    assert [t.text for t in model.histories[-1]] == ["hi", "echo: hi"]


def test_least_recently_used_chat_session_is_evicted(
    model: FakeModel, captured_events: list[dict[str, Any]]
) -> None:
    client = TestClient(create_app(CONFIG, model=model, speech=FakeSpeech(), max_chat_sessions=2))

    client.post("/chat", data={"text": "hi a", "session_id": "a"})
    client.post("/chat", data={"text": "hi b", "session_id": "b"})
    client.post("/chat", data={"text": "again", "session_id": "a"})
    client.post("/chat", data={"text": "hi c", "session_id": "c"})

    assert list(client.app.state.chat_sessions) == ["a", "c"]

    client.post("/chat", data={"text": "still here", "session_id": "a"})
    assert [t.text for t in model.histories[-1]] == ["hi a", "echo: hi a", "again", "echo: again"]

    client.post("/chat", data={"text": "back", "session_id": "b"})
    assert model.histories[-1] == ()

    evicted = [e["session_id"] for e in captured_events if e["event_type"] == "CHAT_SESSION_EVICTED"]
    assert evicted == ["b", "c"]


def test_chat_session_cap_must_be_positive(model: FakeModel) -> None:
    with pytest.raises(ValueError):
        create_app(CONFIG, model=model, speech=FakeSpeech(), max_chat_sessions=0)


def test_chat_returns_structured_lesson(client: TestClient) -> None:
    body = client.post("/chat", data={"text": "teach"}).json()

    lesson = body["structured_response"]
    assert lesson["lesson_title"] == "Fractions"
    assert lesson["lesson_steps"] == [
        {"explanation": "Half is 1/2.", "check_question": "What is half of 4?"}
    ]


def test_chat_forwards_uploaded_file(client: TestClient, model: FakeModel) -> None:
    response = client.post(
        "/chat",
        data={"text": "read this"},
        files={"file": ("notes.txt", b"photosynthesis", "text/plain")},
    )

    assert response.status_code == 200
    attachment = model.attachments[-1]
    assert attachment is not None
    assert attachment.data == b"photosynthesis"
    assert attachment.mime_type == "text/plain"
    assert attachment.name == "notes.txt"


@pytest.mark.parametrize("error", [UpstreamError("chat", "boom"), LessonFormatError("bad json")])
def test_upstream_failures_map_to_apology(
    client: TestClient,
    model: FakeModel,
    error: Exception,
    captured_events: list[dict[str, Any]],
) -> None:
    model.fail_with = error

    response = client.post("/chat", data={"text": "hi"})

    assert response.status_code == 502
    assert response.json() == {"detail": APOLOGY_TEXT}
    assert any(e["event_type"] == "HTTP_UPSTREAM_FAILURE" for e in captured_events)


# ---------------------------------------------------------------------
# Speech and lessons
# ---------------------------------------------------------------------

def test_speech_returns_base64_pcm(client: TestClient) -> None:
    body = client.post("/speech", json={"ssml": "<speak>hi</speak>"}).json()

    assert base64.b64decode(body["audio_base64"]) == PCM
    assert body["sample_rate_hz"] == OUTPUT_SAMPLE_RATE_HZ


def test_speech_rejects_empty_script(client: TestClient) -> None:
    assert client.post("/speech", json={"ssml": ""}).status_code == 422


def test_lesson_bundles_script_prompts_and_audio(client: TestClient) -> None:
    body = client.post("/lesson", json={"topic": "gravity"}).json()

    assert body["voice_script_ssml"] == "<speak>Gravity</speak>"
    assert body["interactive_prompts"] == [{"time_in_seconds": 4.0, "question": "Why?"}]
    assert base64.b64decode(body["audio_base64"]) == PCM


def test_follow_up_returns_text_and_audio(client: TestClient) -> None:
    body = client.post("/lesson/follow-up", json={"question": "Why?", "answer": "Mass"}).json()

    assert body["text"] == "<speak>Mass is right</speak>"
    assert body["sample_rate_hz"] == OUTPUT_SAMPLE_RATE_HZ


def test_lesson_failure_maps_to_apology(client: TestClient, model: FakeModel) -> None:
    model.fail_with = UpstreamError("interactive_lesson", "timeout after 45.0s")

    response = client.post("/lesson", json={"topic": "gravity"})

    assert response.status_code == 502
