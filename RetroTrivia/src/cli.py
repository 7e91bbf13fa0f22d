"""Simple console helpers used by the command line entry point."""

from __future__ import annotations

import json
import sys
from typing import Any, Dict

from .models import Question


def _ensure_utf8_stdout() -> None:
    """Force UTF-8 output on ``sys.stdout`` if supported."""
    reconfigure = getattr(sys.stdout, "reconfigure", None)
    if reconfigure is not None:
        reconfigure(encoding="utf-8", errors="replace")


def say(payload: Dict[str, Any]) -> None:
    """Write ``payload`` to stdout as a single JSON line."""
    print(json.dumps(payload, ensure_ascii=False), flush=True)


def question_payload(question: Question, *, reveal: bool = False) -> Dict[str, Any]:
    """Return the JSON message describing ``question``.

    The correct answer is only included when ``reveal`` is set.
    """
    payload: Dict[str, Any] = {
        "type": "question",
        "id": question.id,
        "question": question.question,
        "options": list(question.options),
        "category": question.category,
        "difficulty": question.difficulty,
        "source": question.source.value,
    }
    if reveal:
        payload["answer"] = question.correct_answer
    return payload


def status_payload(status: str) -> Dict[str, Any]:
    return {"type": "status", "text": status}
