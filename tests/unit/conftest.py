# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


@pytest.fixture(autouse=True)
def captured_events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Route JSONL logs into a list for every test; reset level filtering."""
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: events.append(json.loads(line)))
    logger.configure(level="DEBUG", enabled=True)
    yield events
    logger.configure(level="INFO", enabled=True)
