"""
Comprehension checkpoints for lesson narration.

A checkpoint is a timestamp in the lesson audio where playback pauses to
ask a question. The queue is consumed strictly front-to-back and is never
re-sorted after load: ordering is the loader's job (see sort_checkpoints).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Iterator, Optional


@dataclass(frozen=True)
class Checkpoint:
    """A question asked once narration reaches time_s."""
    time_s: float
    question: str


def sort_checkpoints(checkpoints: Iterable[Checkpoint]) -> list[Checkpoint]:
    """Stable ascending sort by timestamp (for loaders)."""
    return sorted(checkpoints, key=lambda cp: cp.time_s)


class CheckpointQueue:
    """
    FIFO of checkpoints in load order.

    pop() only ever removes the head; nothing reorders entries.
    """

    def __init__(self, checkpoints: Iterable[Checkpoint] = ()) -> None:
        self._items: Deque[Checkpoint] = deque(checkpoints)

    def peek(self) -> Optional[Checkpoint]:
        """Head of the queue, or None if empty."""
        return self._items[0] if self._items else None

    def pop(self) -> Checkpoint:
        """
        Remove and return the head.

        Raises:
            IndexError if empty.
        """
        return self._items.popleft()

    def due(self, position_s: float) -> bool:
        """True if the head's timestamp has been reached."""
        head = self.peek()
        return head is not None and position_s >= head.time_s

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[Checkpoint]:
        return iter(self._items)
