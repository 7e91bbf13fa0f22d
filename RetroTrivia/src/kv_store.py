"""Persisted key-value stores for settings and cache blobs.

Three backends share the :class:`KeyValueStore` interface: a plain dict for
tests, a JSON file on disk for single-device installs and Redis when several
processes share the same player state. Values must be JSON serialisable.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Protocol, TypeVar

from redis import Redis
from redis.exceptions import RedisError

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyValueStore(Protocol):
    """Minimal get/set interface used by the cache and the preferences."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """In-memory store, lost when the process exits."""

    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """Store every key inside a single JSON document.

    Writes go through a temporary file that replaces the original, so a
    crash never leaves a half written document behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError:
            logger.warning("Cannot read %s", self.path, exc_info=True)
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt store %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class RedisStore:
    """Redis backed store. Connection problems degrade to a missing value."""

    def __init__(self, client: Redis, namespace: str = "retrotrivia") -> None:
        self._client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "retrotrivia") -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True), namespace)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _safe_call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
        try:
            return func(*args, **kwargs)
        except RedisError:
            logger.debug("Redis operation failed", exc_info=True)
            return None

    def get(self, key: str) -> Any | None:
        raw = self._safe_call(self._client.get, self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None

    def set(self, key: str, value: Any) -> None:
        self._safe_call(self._client.set, self._key(key), json.dumps(value, ensure_ascii=False))

    def delete(self, key: str) -> None:
        self._safe_call(self._client.delete, self._key(key))


def create_store(settings: "Settings") -> KeyValueStore:
    """Return the store selected by ``settings.storage.backend``."""

    cfg = settings.storage
    if cfg.backend == "memory":
        return MemoryStore()
    if cfg.backend == "redis":
        return RedisStore.from_url(cfg.redis_url, namespace=cfg.namespace)
    return JsonFileStore(cfg.path)


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore", "RedisStore", "create_store"]
