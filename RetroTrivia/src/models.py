"""Data models shared by every question source."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .exceptions import InvalidQuestionError

if TYPE_CHECKING:  # pragma: no cover
    from .kv_store import KeyValueStore


OPTION_COUNT = 4


class SourceTag(str, Enum):
    """Where a question came from. Used for diagnostics only."""

    BUNDLE = "bundle"
    CACHE = "cache"
    RECORD_STORE = "record_store"
    OPEN_TRIVIA = "open_trivia"

    @classmethod
    def from_str(cls, value: Any) -> "SourceTag":
        try:
            return cls(str(value))
        except ValueError:
            return cls.BUNDLE


class Difficulty(str, Enum):
    """Difficulty filter selected by the player."""

    ANY = "any"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def api_value(self) -> Optional[str]:
        """Value forwarded to remote sources, ``None`` meaning no filter."""

        return None if self is Difficulty.ANY else self.value

    @classmethod
    def from_str(cls, value: Any) -> "Difficulty":
        """Return the matching ``Difficulty`` for ``value`` (case insensitive).

        Anything that is not a known label, including non-string values read
        back from a hand edited store, maps to ``ANY``.
        """

        if not isinstance(value, str) or not value:
            return cls.ANY
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.ANY


@dataclass(frozen=True)
class Question:
    """A single multiple choice question.

    ``options`` always holds exactly four answers and ``correct_index``
    points into it. Instances are immutable once decoded.
    """

    question: str
    options: Tuple[str, ...]
    correct_index: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    category: Optional[str] = None
    difficulty: Optional[str] = None
    source: SourceTag = SourceTag.BUNDLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(str(o) for o in self.options))
        if not self.id:
            raise InvalidQuestionError("id must not be empty")
        if not self.question:
            raise InvalidQuestionError("question must not be empty")
        if len(self.options) != OPTION_COUNT:
            raise InvalidQuestionError(
                f"expected {OPTION_COUNT} options, got {len(self.options)}"
            )
        if isinstance(self.correct_index, bool) or not isinstance(self.correct_index, int):
            raise InvalidQuestionError("correct_index must be an integer")
        if not 0 <= self.correct_index < len(self.options):
            raise InvalidQuestionError(f"correct_index out of range: {self.correct_index}")

    @property
    def correct_answer(self) -> str:
        return self.options[self.correct_index]

    def matches(self, difficulty: Difficulty | str | None) -> bool:
        """Return ``True`` when this question satisfies ``difficulty``."""

        if difficulty is None:
            return True
        wanted = Difficulty.from_str(difficulty) if isinstance(difficulty, str) else difficulty
        if wanted is Difficulty.ANY:
            return True
        return (self.difficulty or "").lower() == wanted.value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "correctIndex": self.correct_index,
            "source": self.source.value,
        }
        if self.category is not None:
            data["category"] = self.category
        if self.difficulty is not None:
            data["difficulty"] = self.difficulty
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        try:
            qid = data["id"]
            text = data["question"]
            options = data["options"]
            correct = data["correctIndex"]
        except (KeyError, TypeError) as exc:
            raise InvalidQuestionError(f"missing field: {exc}") from exc
        if not isinstance(options, list):
            raise InvalidQuestionError("options must be a list")
        category = data.get("category")
        difficulty = data.get("difficulty")
        return cls(
            id=str(qid),
            question=str(text),
            options=tuple(options),
            correct_index=correct,
            category=str(category) if category is not None else None,
            difficulty=str(difficulty) if difficulty is not None else None,
            source=SourceTag.from_str(data.get("source")),
        )


@dataclass
class FilterConfiguration:
    """Player preferences for the questions being served."""

    difficulty: Difficulty = Difficulty.ANY
    enable_online_questions: bool = True

    DIFFICULTY_KEY = "trivia.filter.difficulty"
    ONLINE_QUESTIONS_KEY = "trivia.filter.onlineQuestions"

    @classmethod
    def load(cls, store: "KeyValueStore") -> "FilterConfiguration":
        difficulty = Difficulty.from_str(store.get(cls.DIFFICULTY_KEY))
        online = store.get(cls.ONLINE_QUESTIONS_KEY)
        return cls(
            difficulty=difficulty,
            enable_online_questions=online if isinstance(online, bool) else True,
        )

    def save(self, store: "KeyValueStore") -> None:
        store.set(self.DIFFICULTY_KEY, self.difficulty.value)
        store.set(self.ONLINE_QUESTIONS_KEY, self.enable_online_questions)


__all__ = [
    "OPTION_COUNT",
    "SourceTag",
    "Difficulty",
    "Question",
    "FilterConfiguration",
]
