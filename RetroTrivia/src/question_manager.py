"""Question supply: pool maintenance and the source fallback chain.

Sources are tried in a fixed order (record store, Open Trivia DB, local
cache, bundled set) and the first non-empty answer wins. Source failures
never reach the caller; they are logged, counted and the next source is
tried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Collection, Iterable, List, Optional, Protocol, Tuple

from .config import PoolConfig
from .event_bus import (
    CACHE_CLEARED,
    POOL_REFILLED,
    QUESTION_ASKED,
    QUESTIONS_LOADED,
    SESSION_RESET,
    EventBus,
)
from .exceptions import SourceUnavailableError
from .kv_store import KeyValueStore
from .metrics import POOL_SIZE, record_source
from .models import Difficulty, FilterConfiguration, Question, SourceTag
from .question_cache import QuestionCache
from .sources.bundle import BundledQuestionSet


logger = logging.getLogger(__name__)


class RandomQuestionSource(Protocol):
    async def fetch_random(
        self, count: int, difficulty: str | None, exclude_ids: Collection[str]
    ) -> List[Question]:
        ...


class CategoryQuestionSource(Protocol):
    async def fetch(self, amount: int, category: int, difficulty: str | None) -> List[Question]:
        ...


class QuestionManager:
    """Keep a pool of unasked questions filled from the available sources."""

    def __init__(
        self,
        record_store: Optional[RandomQuestionSource],
        open_trivia: Optional[CategoryQuestionSource],
        cache: QuestionCache,
        bundle: BundledQuestionSet,
        store: KeyValueStore,
        *,
        pool_config: PoolConfig | None = None,
        event_bus: EventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.record_store = record_store
        self.open_trivia = open_trivia
        self.cache = cache
        self.bundle = bundle
        self.store = store
        self.pool_config = pool_config or PoolConfig()
        self.event_bus = event_bus or EventBus()
        self._rng = rng or random.Random()

        self._filter = FilterConfiguration.load(store)
        self._pool: List[Question] = []
        self._asked: set[str] = set()
        self._lock = asyncio.Lock()
        self._refills: set[asyncio.Task[None]] = set()

        self.current_source: SourceTag | None = None
        self.force_bundle_mode = False

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def pool(self) -> Tuple[Question, ...]:
        return tuple(self._pool)

    @property
    def asked_ids(self) -> frozenset[str]:
        return frozenset(self._asked)

    @property
    def filter_config(self) -> FilterConfiguration:
        return self._filter

    @filter_config.setter
    def filter_config(self, value: FilterConfiguration) -> None:
        self._filter = value
        value.save(self.store)

    def set_difficulty(self, difficulty: Difficulty) -> None:
        self.filter_config = FilterConfiguration(
            difficulty=difficulty,
            enable_online_questions=self._filter.enable_online_questions,
        )

    @property
    def refill_in_progress(self) -> bool:
        return any(not t.done() for t in self._refills)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def load_questions(self) -> None:
        """Replace the pool with a fresh batch from the first working source."""

        difficulty = self._filter.difficulty
        logger.info(
            "Loading questions (online: %s, difficulty: %s, bundle only: %s)",
            self._filter.enable_online_questions,
            difficulty.display_name,
            self.force_bundle_mode,
        )
        async with self._lock:
            questions, source = await self._fetch_online()
            if not questions:
                questions, source = self._fetch_offline()
            self._pool = _unique(questions)
            self.current_source = source
            POOL_SIZE.set(len(self._pool))

        if source is None:
            logger.error("Every question source is exhausted, pool is empty")
        else:
            logger.info("Loaded %d questions from %s", len(self._pool), source.value)
        self.event_bus.publish(QUESTIONS_LOADED, source, len(self._pool))

    def get_next_question(self) -> Question | None:
        """Return the first unasked question in the pool, or ``None``.

        A background refill is started when the pool is below the low-water
        mark; this call never waits for it.
        """

        if len(self._pool) < self.pool_config.min_size:
            self._schedule_refill()

        for question in self._pool:
            if question.id not in self._asked:
                return question
        logger.debug("No unanswered questions available in pool")
        return None

    def mark_question_asked(self, question_id: str) -> None:
        if question_id in self._asked:
            return
        self._asked.add(question_id)
        logger.debug("Marked question %s as asked (%d total)", question_id, len(self._asked))
        self.event_bus.publish(QUESTION_ASKED, question_id)

    def reset_session(self) -> None:
        cleared = len(self._asked)
        self._asked.clear()
        logger.info("Session reset, cleared %d asked questions", cleared)
        self.event_bus.publish(SESSION_RESET)

    async def refill_pool(self) -> None:
        """Top the pool up from the online sources.

        New questions are appended when their id is not already pooled and
        the pool is then trimmed from the front down to ``max_size``. The
        cache and the bundle are used only when the pool is empty, and are
        trimmed the same way.
        """

        async with self._lock:
            logger.debug("Refilling question pool (current: %d)", len(self._pool))
            questions, source = await self._fetch_online()
            added = 0
            if questions:
                existing = {q.id for q in self._pool}
                fresh = [q for q in _unique(questions) if q.id not in existing]
                self._pool.extend(fresh)
                self._trim_pool()
                added = len(fresh)
                self.current_source = source
                logger.info(
                    "Refilled pool with %d new questions (total: %d)", added, len(self._pool)
                )
            elif not self._pool:
                questions, source = self._fetch_offline()
                self._pool = _unique(questions)
                self._trim_pool()
                self.current_source = source
                added = len(self._pool)
            POOL_SIZE.set(len(self._pool))

        self.event_bus.publish(POOL_REFILLED, added, len(self._pool))

    def get_pool_status(self) -> str:
        unanswered = sum(1 for q in self._pool if q.id not in self._asked)
        source = self.current_source.value if self.current_source else "none"
        return (
            f"Pool: {len(self._pool)} total, {unanswered} unanswered, "
            f"{len(self._asked)} asked (source: {source})"
        )

    def clear_cache(self) -> None:
        self.cache.clear()
        self.event_bus.publish(CACHE_CLEARED)

    async def wait_for_refill(self) -> None:
        """Wait until every background refill has finished."""

        while self._refills:
            await asyncio.gather(*list(self._refills), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._refills):
            task.cancel()
        await asyncio.gather(*list(self._refills), return_exceptions=True)
        self._refills.clear()

    # ------------------------------------------------------------------
    # Source chain
    # ------------------------------------------------------------------
    async def _fetch_online(self) -> Tuple[List[Question], SourceTag | None]:
        if self.force_bundle_mode or not self._filter.enable_online_questions:
            return [], None

        difficulty = self._filter.difficulty
        cfg = self.pool_config
        attempts: List[Tuple[SourceTag, Optional[Callable[[], Awaitable[List[Question]]]]]] = [
            (
                SourceTag.RECORD_STORE,
                None
                if self.record_store is None
                else lambda: self.record_store.fetch_random(  # type: ignore[union-attr]
                    count=cfg.target_size,
                    difficulty=difficulty.api_value,
                    exclude_ids=set(self._asked),
                ),
            ),
            (
                SourceTag.OPEN_TRIVIA,
                None
                if self.open_trivia is None
                else lambda: self.open_trivia.fetch(  # type: ignore[union-attr]
                    amount=cfg.target_size,
                    category=cfg.category_id,
                    difficulty=difficulty.api_value,
                ),
            ),
        ]

        for tag, call in attempts:
            if call is None:
                continue
            questions = await self._attempt(tag, call)
            if questions:
                self._write_cache(questions, difficulty)
                return questions, tag
        return [], None

    async def _attempt(
        self, tag: SourceTag, call: Callable[[], Awaitable[List[Question]]]
    ) -> List[Question]:
        try:
            questions = await asyncio.wait_for(call(), timeout=self.pool_config.source_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                "%s timed out, trying next source", tag.value, extra=_context(tag, "timeout")
            )
            record_source(tag.value, "timeout")
            return []
        except SourceUnavailableError as exc:
            logger.warning(
                "%s unavailable (%s: %s), trying next source",
                tag.value,
                type(exc).__name__,
                exc,
                extra=_context(tag, "error"),
            )
            record_source(tag.value, "error")
            return []
        except Exception:
            logger.exception(
                "Unexpected failure from %s, trying next source",
                tag.value,
                extra=_context(tag, "error"),
            )
            record_source(tag.value, "error")
            return []
        if not questions:
            logger.info(
                "%s returned no questions, trying next source",
                tag.value,
                extra=_context(tag, "empty"),
            )
            record_source(tag.value, "empty")
            return []
        record_source(tag.value, "ok")
        return list(questions)

    def _fetch_offline(self) -> Tuple[List[Question], SourceTag | None]:
        difficulty = self._filter.difficulty
        if not self.force_bundle_mode:
            cached = self.cache.get(self.pool_config.target_size, difficulty)
            if cached:
                record_source(SourceTag.CACHE.value, "ok")
                return cached, SourceTag.CACHE
            record_source(SourceTag.CACHE.value, "empty")

        questions = self.bundle.filtered(difficulty)
        if not questions:
            logger.info("No bundled questions match %s, using all bundled questions", difficulty.value)
            questions = self.bundle.load_all()
        if not questions:
            record_source(SourceTag.BUNDLE.value, "empty")
            return [], None
        self._rng.shuffle(questions)
        record_source(SourceTag.BUNDLE.value, "ok")
        return questions, SourceTag.BUNDLE

    def _trim_pool(self) -> None:
        overflow = len(self._pool) - self.pool_config.max_size
        if overflow > 0:
            del self._pool[:overflow]

    def _write_cache(self, questions: List[Question], difficulty: Difficulty) -> None:
        try:
            self.cache.put(questions, difficulty)
        except OSError:
            logger.warning("Could not write question cache", exc_info=True)

    def _schedule_refill(self) -> None:
        if self.refill_in_progress:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping background refill")
            return
        task = loop.create_task(self.refill_pool())
        self._refills.add(task)
        task.add_done_callback(self._refill_done)

    def _refill_done(self, task: asyncio.Task[Any]) -> None:
        self._refills.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background refill failed", exc_info=exc)


def _context(tag: SourceTag, outcome: str) -> dict[str, str]:
    return {"source": tag.value, "outcome": outcome}


def _unique(questions: Iterable[Question]) -> List[Question]:
    seen: set[str] = set()
    result: List[Question] = []
    for q in questions:
        if q.id not in seen:
            seen.add(q.id)
            result.append(q)
    return result


__all__ = ["QuestionManager"]
