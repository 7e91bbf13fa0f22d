"""Question sources in fallback order: record store, Open Trivia DB, bundle."""

from .bundle import BundledQuestionSet
from .open_trivia import MUSIC_CATEGORY, OpenTriviaClient
from .record_store import RecordStoreClient

__all__ = ["BundledQuestionSet", "MUSIC_CATEGORY", "OpenTriviaClient", "RecordStoreClient"]
