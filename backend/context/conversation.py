"""
Conversation context management.

Responsibilities:
- Store ordered user/model turns for one chat session
- Enforce truncation rules:
  - Max 12 turns OR max 12,000 characters (whichever is hit first)
  - Drop oldest turns until constraints are satisfied
  - Allow a single oversized turn (with warning)
- Provide a provider-neutral representation for the tutor model

Non-responsibilities:
- No provider formatting (the Gemini adapter builds Content objects)
- No persistence: history lives for the lifetime of the process
- Attachments are not kept in history, only the turn text
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Literal

from constants import MAX_CONTEXT_CHARS, MAX_CONTEXT_TURNS
from observability.logger import log_event


Role = Literal["user", "model"]


@dataclass(frozen=True)
class Turn:
    """Single conversation turn."""
    role: Role
    text: str
    turn_id: int


@dataclass(frozen=True)
class Attachment:
    """File sent inline with one user message."""
    data: bytes
    mime_type: str
    name: str | None = None


class ConversationContext:
    """
    Mutable, bounded chat history.

    Invariants:
    - Turns are stored in chronological order
    - turn_id is monotonic per context
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id
        self._turns: list[Turn] = []
        self._ids = itertools.count()
        self._chars = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def add_user_turn(self, text: str) -> Turn:
        """Add a user turn and enforce truncation rules."""
        return self._append("user", text)

    def add_model_turn(self, text: str) -> Turn:
        """Add a tutor turn and enforce truncation rules."""
        return self._append("model", text)

    def clear(self) -> None:
        self._turns.clear()
        self._chars = 0

    def serialize(self) -> list[dict[str, str]]:
        """
        Serialize turns into a role/text structure.

        Output format:
        [
          {"role": "user", "text": "..."},
          {"role": "model", "text": "..."},
        ]
        """
        return [{"role": t.role, "text": t.text} for t in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, role: Role, text: str) -> Turn:
        turn = Turn(role=role, text=text, turn_id=next(self._ids))
        self._turns.append(turn)
        self._chars += len(text)

        while self._exceeds_limits() and len(self._turns) > 1:
            self._drop_oldest()

        if self._exceeds_limits():
            # A single oversized turn is kept
            log_event({
                "event_type": "CONTEXT_SINGLE_TURN_OVERSIZED",
                "level": "WARNING",
                "session_id": self._session_id,
                "turn_id": turn.turn_id,
                "char_count": len(turn.text),
            })
        return turn

    def _drop_oldest(self) -> None:
        dropped = self._turns.pop(0)
        self._chars -= len(dropped.text)
        log_event({
            "event_type": "CONTEXT_TURN_DROPPED",
            "level": "DEBUG",
            "session_id": self._session_id,
            "turn_id": dropped.turn_id,
            "role": dropped.role,
            "char_count": len(dropped.text),
        })

    def _exceeds_limits(self) -> bool:
        return len(self._turns) > MAX_CONTEXT_TURNS or self._chars > MAX_CONTEXT_CHARS
