"""Local cache of questions fetched from the online sources.

The cache is a flat list stored under a single key together with one
timestamp for the whole batch. Any write refreshes that timestamp, so a
partial update keeps older entries alive as well.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List

from .exceptions import InvalidQuestionError
from .kv_store import KeyValueStore
from .metrics import CACHE_WRITES
from .models import Difficulty, Question, SourceTag


logger = logging.getLogger(__name__)

CACHE_KEY = "cachedQuestions"
TIMESTAMP_KEY = "cachedQuestionsTimestamp"
DIFFICULTY_KEY = "cachedQuestionsDifficulty"

DEFAULT_MAX_AGE = 24 * 60 * 60
DEFAULT_MAX_SIZE = 100


class QuestionCache:
    """Bounded, time-limited question cache persisted in a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_age: float = DEFAULT_MAX_AGE,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.max_age = max_age
        self.max_size = max_size
        self._clock = clock
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def put(self, questions: List[Question], difficulty: Difficulty = Difficulty.ANY) -> None:
        """Merge ``questions`` into the cache and refresh its timestamp."""

        if not questions:
            return

        cached = self._load_all()
        existing = {q.id for q in cached}
        for q in questions:
            if q.id not in existing:
                existing.add(q.id)
                cached.append(q)

        if len(cached) > self.max_size:
            cached = cached[-self.max_size:]

        self.store.set(CACHE_KEY, [q.to_dict() for q in cached])
        self.store.set(TIMESTAMP_KEY, self._clock())
        self.store.set(DIFFICULTY_KEY, difficulty.value)
        CACHE_WRITES.inc()
        logger.debug("Cached %d questions (%d total)", len(questions), len(cached))

    def get(self, count: int, difficulty: Difficulty = Difficulty.ANY) -> List[Question]:
        """Return up to ``count`` random cached questions matching ``difficulty``."""

        if not self.is_valid():
            logger.debug("Question cache is stale or empty")
            return []

        questions = [q for q in self._load_all() if q.matches(difficulty)]
        self._rng.shuffle(questions)
        result = [replace(q, source=SourceTag.CACHE) for q in questions[: max(count, 0)]]
        logger.debug("Returning %d cached questions", len(result))
        return result

    def is_valid(self) -> bool:
        """``True`` when a timestamp exists and is younger than ``max_age``."""

        ts = self.store.get(TIMESTAMP_KEY)
        if not isinstance(ts, (int, float)):
            return False
        age = self._clock() - ts
        if age >= self.max_age:
            logger.debug("Question cache is stale (%d hours old)", int(age // 3600))
            return False
        return True

    def clear(self) -> None:
        for key in (CACHE_KEY, TIMESTAMP_KEY, DIFFICULTY_KEY):
            self.store.delete(key)
        logger.info("Question cache cleared")

    @property
    def count(self) -> int:
        return len(self._load_all())

    @property
    def timestamp(self) -> datetime | None:
        ts = self.store.get(TIMESTAMP_KEY)
        if not isinstance(ts, (int, float)):
            return None
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    @property
    def difficulty(self) -> Difficulty | None:
        """Difficulty used for the last write, if any."""

        raw = self.store.get(DIFFICULTY_KEY)
        return Difficulty.from_str(raw) if raw else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _load_all(self) -> List[Question]:
        raw = self.store.get(CACHE_KEY)
        if not isinstance(raw, list):
            return []
        questions: List[Question] = []
        for item in raw:
            try:
                questions.append(Question.from_dict(item))
            except InvalidQuestionError:
                logger.warning("Skipping undecodable cached question: %r", item)
        return questions


__all__ = ["QuestionCache", "CACHE_KEY", "TIMESTAMP_KEY", "DIFFICULTY_KEY"]
