"""Dependency injection container for the question supply services.

The container builds every collaborator of :class:`QuestionManager` from a
:class:`Settings` instance. Tests and embedding applications can pass their
own implementations instead, or swap them after construction, without
touching consumer code.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import Settings
from .event_bus import EventBus
from .kv_store import KeyValueStore, create_store
from .question_cache import QuestionCache
from .question_manager import QuestionManager
from .sources.bundle import BundledQuestionSet
from .sources.open_trivia import OpenTriviaClient
from .sources.record_store import RecordStoreClient


@dataclass
class ServiceContainer:
    """Container holding the application-wide services."""

    settings: Settings = field(default_factory=Settings)
    event_bus: EventBus = field(default_factory=EventBus)
    rng: random.Random = field(default_factory=random.Random)

    _store: KeyValueStore | None = field(default=None, init=False)
    _cache: QuestionCache | None = field(default=None, init=False)
    _bundle: BundledQuestionSet | None = field(default=None, init=False)
    _record_store: RecordStoreClient | None = field(default=None, init=False)
    _open_trivia: OpenTriviaClient | None = field(default=None, init=False)
    _manager: QuestionManager | None = field(default=None, init=False)

    def store(self) -> KeyValueStore:
        if self._store is None:
            self._store = create_store(self.settings)
        return self._store

    def cache(self) -> QuestionCache:
        if self._cache is None:
            cfg = self.settings.cache
            self._cache = QuestionCache(
                self.store(), max_age=cfg.max_age_s, max_size=cfg.max_size, rng=self.rng
            )
        return self._cache

    def bundle(self) -> BundledQuestionSet:
        """Return the bundled set, checking it is usable on first access."""

        if self._bundle is None:
            bundle = BundledQuestionSet(self.settings.bundle.path)
            bundle.ensure_available()
            self._bundle = bundle
        return self._bundle

    def record_store(self) -> RecordStoreClient:
        if self._record_store is None:
            self._record_store = RecordStoreClient(self.settings.record_store, rng=self.rng)
        return self._record_store

    def open_trivia(self) -> OpenTriviaClient:
        if self._open_trivia is None:
            self._open_trivia = OpenTriviaClient(self.settings.open_trivia, rng=self.rng)
        return self._open_trivia

    def question_manager(self) -> QuestionManager:
        if self._manager is None:
            record_store: Any = (
                self.record_store() if self.settings.record_store.base_url else None
            )
            self._manager = QuestionManager(
                record_store,
                self.open_trivia(),
                self.cache(),
                self.bundle(),
                self.store(),
                pool_config=self.settings.pool,
                event_bus=self.event_bus,
                rng=self.rng,
            )
        return self._manager

    async def aclose(self) -> None:
        """Stop background work and release HTTP sessions."""

        if self._manager is not None:
            await self._manager.aclose()
            self._manager = None
        self.close()

    def close(self) -> None:
        if self._record_store is not None:
            self._record_store.close()
            self._record_store = None
        if self._open_trivia is not None:
            self._open_trivia.close()
            self._open_trivia = None


def build_container(settings_path: str | Path | None = None) -> ServiceContainer:
    """Create a container from ``settings_path`` (``settings.yaml`` by default)."""

    path = Path(settings_path) if settings_path is not None else Path("settings.yaml")
    return ServiceContainer(settings=Settings.model_validate_yaml(path))


__all__ = ["ServiceContainer", "build_container"]
