from pathlib import Path
from typing import Any, Dict, Literal, Optional

import os
import yaml
from pydantic import BaseModel, Field


class PoolConfig(BaseModel):
    min_size: int = Field(10, ge=0)      # low-water mark triggering a refill
    target_size: int = Field(25, ge=1)   # questions requested per fetch
    max_size: int = Field(30, ge=1)      # hard cap, oldest entries trimmed
    category_id: int = 12                # Open Trivia "Entertainment: Music"
    source_timeout_s: float = 30.0       # upper bound for one source attempt


class CacheConfig(BaseModel):
    max_age_s: float = 24 * 60 * 60
    max_size: int = Field(100, ge=1)


class RecordStoreConfig(BaseModel):
    base_url: str = ""
    api_token: str = ""
    record_type: str = "Question"
    timeout_s: float = 15.0
    retries: int = Field(2, ge=1)
    max_sort_order: int = 9999
    sample_window: int = 1000
    max_results_per_query: int = 400
    upload_batch_size: int = Field(200, ge=1)   # records per records/modify call
    upload_pause_s: float = 0.5                 # pause between upload batches


class OpenTriviaConfig(BaseModel):
    base_url: str = "https://opentdb.com/api.php"
    token_url: str = "https://opentdb.com/api_token.php"
    timeout_s: float = 15.0
    rate_limit_cooldown_s: float = 5.0


class BundleConfig(BaseModel):
    path: Optional[str] = None  # defaults to the packaged data/questions.json


class StorageConfig(BaseModel):
    backend: Literal["memory", "file", "redis"] = "file"
    path: str = "data/state/store.json"
    redis_url: str = "redis://localhost:6379/0"
    namespace: str = "retrotrivia"


class Settings(BaseModel):
    debug: bool = False
    log_level: str = "INFO"
    log_path: str = "data/logs/retrotrivia.log"
    pool: PoolConfig = PoolConfig()
    cache: CacheConfig = CacheConfig()
    record_store: RecordStoreConfig = RecordStoreConfig()
    open_trivia: OpenTriviaConfig = OpenTriviaConfig()
    bundle: BundleConfig = BundleConfig()
    storage: StorageConfig = StorageConfig()

    @classmethod
    def model_validate_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file.

        Returns the default configuration if the file does not exist and raises
        a ``ValueError`` when the YAML content is invalid. When
        ``RETROTRIVIA_ENV`` is set, ``settings.<env>.yaml`` next to ``path`` is
        merged on top of the base file.
        """

        data = _read_yaml(path)
        env = os.getenv("RETROTRIVIA_ENV")
        if env:
            override = path.with_name(f"{path.stem}.{env}{path.suffix or '.yaml'}")
            data = _deep_merge(data, _read_yaml(override))
        settings = cls.model_validate(data)
        return settings.with_env_overrides()

    def with_env_overrides(self) -> "Settings":
        """Apply record store credentials taken from the environment."""

        url = os.getenv("RETROTRIVIA_RECORD_STORE_URL")
        token = os.getenv("RETROTRIVIA_RECORD_STORE_TOKEN")
        if not url and not token:
            return self
        update: Dict[str, Any] = {}
        if url:
            update["base_url"] = url
        if token:
            update["api_token"] = token
        record_store = self.record_store.model_copy(update=update)
        return self.model_copy(update={"record_store": record_store})


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {path}")
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
