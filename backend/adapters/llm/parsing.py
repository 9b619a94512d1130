"""
Parsing of model text into tutor data.

Two reply shapes are handled:

1) Chat replies:
       <conversational text>||--JSON--||<lesson JSON>
   No delimiter = plain conversational reply (no structured lesson).

2) Interactive lessons (schema-constrained):
       {"voice_script_ssml": str,
        "interactive_prompts": [{"time_in_seconds": number, "question": str}]}

JSON may be wrapped in markdown fences even when the provider promises raw
JSON; fences are stripped before decoding.

All parsing failures raise LessonFormatError.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping

from audio.pcm import FormatError
from constants import STRUCTURED_REPLY_DELIMITER
from lesson.checkpoints import Checkpoint, sort_checkpoints


class LessonFormatError(FormatError):
    """Structured reply JSON missing, malformed, or of the wrong shape."""


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


# ---------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class LessonStep:
    explanation: str
    check_question: str


@dataclass(frozen=True)
class StructuredLesson:
    """Lesson card attached to a chat reply."""
    lesson_title: str
    lesson_steps: tuple[LessonStep, ...]
    real_life_example: str
    motivational_quote: str
    voice_script_ssml: str

    @classmethod
    def from_dict(cls, data: Any) -> StructuredLesson:
        if not isinstance(data, Mapping):
            raise LessonFormatError(f"lesson must be a JSON object, got {type(data).__name__}")

        raw_steps = data.get("lesson_steps") or []
        if not isinstance(raw_steps, list):
            raise LessonFormatError("lesson_steps must be a list")

        steps = []
        for item in raw_steps:
            if not isinstance(item, Mapping):
                raise LessonFormatError("lesson_steps entries must be objects")
            steps.append(LessonStep(
                explanation=_text(item, "explanation"),
                check_question=_text(item, "check_question"),
            ))

        return cls(
            lesson_title=_text(data, "lesson_title"),
            lesson_steps=tuple(steps),
            real_life_example=_text(data, "real_life_example"),
            motivational_quote=_text(data, "motivational_quote"),
            voice_script_ssml=_text(data, "voice_script_ssml"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_title": self.lesson_title,
            "lesson_steps": [
                {"explanation": s.explanation, "check_question": s.check_question}
                for s in self.lesson_steps
            ],
            "real_life_example": self.real_life_example,
            "motivational_quote": self.motivational_quote,
            "voice_script_ssml": self.voice_script_ssml,
        }


@dataclass(frozen=True)
class TutorReply:
    text: str
    lesson: StructuredLesson | None = None


@dataclass(frozen=True)
class InteractiveLesson:
    """Narration script plus checkpoints sorted by time."""
    voice_script_ssml: str
    checkpoints: tuple[Checkpoint, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> InteractiveLesson:
        if not isinstance(data, Mapping):
            raise LessonFormatError(f"lesson must be a JSON object, got {type(data).__name__}")

        script = data.get("voice_script_ssml")
        if not isinstance(script, str) or not script.strip():
            raise LessonFormatError("voice_script_ssml missing or empty")

        prompts = data.get("interactive_prompts") or []
        if not isinstance(prompts, list):
            raise LessonFormatError("interactive_prompts must be a list")

        checkpoints = []
        for item in prompts:
            if not isinstance(item, Mapping):
                raise LessonFormatError("interactive_prompts entries must be objects")
            try:
                time_s = float(item["time_in_seconds"])
            except (KeyError, TypeError, ValueError) as exc:
                raise LessonFormatError(f"bad time_in_seconds: {item!r}") from exc
            question = item.get("question")
            if not isinstance(question, str) or not question.strip():
                raise LessonFormatError(f"bad question: {item!r}")
            checkpoints.append(Checkpoint(time_s=max(0.0, time_s), question=question.strip()))

        return cls(voice_script_ssml=script, checkpoints=tuple(sort_checkpoints(checkpoints)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "voice_script_ssml": self.voice_script_ssml,
            "interactive_prompts": [
                {"time_in_seconds": cp.time_s, "question": cp.question}
                for cp in self.checkpoints
            ],
        }


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

def extract_json(text: str) -> Any:
    """
    Decode JSON from model text, tolerating markdown fences and stray prose
    around a single top-level object.
    """
    candidate = text.strip()

    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise LessonFormatError("no JSON object found in reply")

    try:
        return json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as exc:
        raise LessonFormatError(f"malformed JSON: {exc.msg}") from exc


def split_structured_reply(raw: str) -> TutorReply:
    """Split a chat reply on the delimiter. No delimiter = plain reply."""
    text, sep, payload = raw.partition(STRUCTURED_REPLY_DELIMITER)
    if not sep:
        return TutorReply(text=raw.strip())

    lesson = StructuredLesson.from_dict(extract_json(payload))
    return TutorReply(text=text.strip(), lesson=lesson)


def parse_interactive_lesson(raw: str) -> InteractiveLesson:
    return InteractiveLesson.from_dict(extract_json(raw))


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise LessonFormatError(f"{key} must be a string")
    return value
