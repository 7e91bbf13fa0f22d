"""Question set shipped with the package, the source of last resort."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List

from ..exceptions import BundleEmptyError, InvalidQuestionError
from ..models import Difficulty, Question


logger = logging.getLogger(__name__)

DEFAULT_BUNDLE_PATH = Path(__file__).resolve().parents[1] / "data" / "questions.json"


class BundledQuestionSet:
    """Questions read once from a local JSON file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_BUNDLE_PATH
        self._questions: List[Question] | None = None

    def load_all(self) -> List[Question]:
        """Return every bundled question, reading the file on first use."""

        if self._questions is None:
            self._questions = self._read()
            logger.info("Loaded %d bundled questions from %s", len(self._questions), self.path)
        return list(self._questions)

    def filtered(self, difficulty: Difficulty) -> List[Question]:
        return [q for q in self.load_all() if q.matches(difficulty)]

    def ensure_available(self) -> None:
        """Fail fast when the package ships no usable question."""

        if not self.load_all():
            raise BundleEmptyError(f"no bundled questions in {self.path}")

    def __len__(self) -> int:
        return len(self.load_all())

    def _read(self) -> List[Question]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.error("Failed to load bundled questions from %s", self.path, exc_info=True)
            return []
        if not isinstance(data, list):
            logger.error("Bundled questions in %s are not a list", self.path)
            return []

        questions: List[Question] = []
        for item in data:
            try:
                questions.append(Question.from_dict(item))
            except InvalidQuestionError as exc:
                logger.warning("Skipping bundled question: %s", exc)
        return questions


__all__ = ["BundledQuestionSet", "DEFAULT_BUNDLE_PATH"]
