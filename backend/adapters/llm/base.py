"""
Tutor language-model contract.

Purpose:
- Define the operations the tutor needs from a text/JSON generation provider.
- Keep orchestration (playback, checkpoints, sessions) OUT of the adapter.

Rules:
- This file contains NO logic.
- No retries.
- Every failure surfaces as UpstreamError (provider/timeout) or
  LessonFormatError (unusable structured output).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from adapters.llm.parsing import InteractiveLesson, TutorReply
from context.conversation import Attachment, Turn


class TutorModel(ABC):
    """
    Abstract tutor text generator.

    The adapter is a *dumb pipe*:
    prompt + history -> provider -> parsed tutor data.

    Caller responsibilities (NOT here):
    - Conversation bookkeeping
    - What to do with the reply (display, speech, playback)
    """

    @abstractmethod
    async def chat(
        self,
        text: str,
        *,
        attachment: Attachment | None = None,
        history: Sequence[Turn] = (),
    ) -> TutorReply:
        """
        One conversational turn in the tutor persona.

        Contract:
        - attachment bytes are sent inline with their MIME type, before the text.
        - The reply is split on the structured-reply delimiter. No delimiter
          means a plain reply (lesson=None).
        """
        raise NotImplementedError

    @abstractmethod
    async def interactive_lesson(self, topic: str) -> InteractiveLesson:
        """Schema-constrained narration script + checkpoint questions."""
        raise NotImplementedError

    @abstractmethod
    async def follow_up_script(self, question: str, answer: str) -> str:
        """Short SSML reaction to a checkpoint answer."""
        raise NotImplementedError

    @abstractmethod
    async def continue_lesson(self, topic: str, question: str, answer: str) -> InteractiveLesson:
        """Next narration segment after a checkpoint answer."""
        raise NotImplementedError
