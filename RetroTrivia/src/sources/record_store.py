"""Client for the cloud record store holding the main question catalogue.

The store speaks a small JSON protocol modelled on CloudKit web services:
queries are posted to ``records/query`` and answered with a list of records
whose fields are wrapped as ``{"value": ...}``. Every ``Question`` record
carries a ``sortOrder`` between 0 and ``max_sort_order`` that lets us pick a
random slice of a large catalogue without reading all of it.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Collection, Dict, List, Optional, Sequence

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import RecordStoreConfig
from ..exceptions import (
    InvalidQuestionError,
    RecordStoreError,
    RecordStoreNetworkError,
    RecordStoreNoResults,
    RecordStoreNotConfigured,
    RecordStorePermissionDenied,
    RecordStoreServerError,
)
from ..models import OPTION_COUNT, Question, SourceTag


logger = logging.getLogger(__name__)

_PERMISSION_CODES = {"AUTHENTICATION_FAILED", "AUTHENTICATION_REQUIRED", "ACCESS_DENIED"}
_SERVER_CODES = {"SERVICE_UNAVAILABLE", "THROTTLED", "INTERNAL_ERROR", "TRY_AGAIN_LATER"}


def record_to_question(record: Dict[str, Any]) -> Optional[Question]:
    """Decode a ``Question`` record, returning ``None`` when it is unusable."""

    name = record.get("recordName")
    fields = record.get("fields") or {}

    def value(key: str) -> Any:
        wrapped = fields.get(key)
        return wrapped.get("value") if isinstance(wrapped, dict) else None

    text = value("questionText")
    options = value("options")
    correct = value("correctIndex")
    if not name or not isinstance(text, str) or not isinstance(options, list):
        logger.debug("Invalid record %s: missing required fields", name)
        return None
    if len(options) != OPTION_COUNT or not all(isinstance(o, str) for o in options):
        logger.debug("Invalid record %s: expected %d options", name, OPTION_COUNT)
        return None
    if isinstance(correct, bool) or not isinstance(correct, int):
        logger.debug("Invalid record %s: bad correctIndex %r", name, correct)
        return None
    category = value("category")
    difficulty = value("difficulty")
    try:
        return Question(
            id=str(name),
            question=text,
            options=tuple(options),
            correct_index=correct,
            category=category if isinstance(category, str) else None,
            difficulty=difficulty if isinstance(difficulty, str) else None,
            source=SourceTag.RECORD_STORE,
        )
    except InvalidQuestionError as exc:
        logger.debug("Invalid record %s: %s", name, exc)
        return None


def question_to_fields(question: Question, sort_order: int) -> Dict[str, Any]:
    """Encode ``question`` as the field map of an active ``Question`` record."""

    fields = {
        "questionText": question.question,
        "options": list(question.options),
        "correctIndex": question.correct_index,
        "category": question.category or "Music",
        "difficulty": question.difficulty or "medium",
        "isActive": 1,
        "sortOrder": sort_order,
    }
    return {name: {"value": value} for name, value in fields.items()}


@dataclass
class UploadResult:
    saved: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.saved + self.failed


class RecordStoreClient:
    """Fetch questions from the cloud record store."""

    source = SourceTag.RECORD_STORE

    def __init__(
        self,
        config: RecordStoreConfig,
        session: requests.Session | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Question queries
    # ------------------------------------------------------------------
    async def fetch_random(
        self,
        count: int = 25,
        difficulty: str | None = None,
        exclude_ids: Collection[str] = (),
    ) -> List[Question]:
        """Sample ``count`` questions from a random ``sortOrder`` window.

        Falls back to :meth:`fetch` when the window is empty or the windowed
        query fails.
        """

        cfg = self.config
        window = min(cfg.sample_window, cfg.max_sort_order)
        start = self._rng.randint(0, cfg.max_sort_order - window)
        end = start + window
        filters = self._base_filters(difficulty) + [
            _filter("sortOrder", "GREATER_THAN_OR_EQUALS", start),
            _filter("sortOrder", "LESS_THAN_OR_EQUALS", end),
        ]
        body = self._query_body(
            filters,
            sort=[{"fieldName": "sortOrder", "ascending": self._rng.random() < 0.5}],
            limit=min(count * 3, cfg.max_results_per_query),
        )
        excluded = set(exclude_ids)
        try:
            data = await asyncio.to_thread(self._request, "POST", "records/query", body)
        except RecordStoreNotConfigured:
            raise
        except RecordStoreError as exc:
            logger.info("Random fetch failed (%s), falling back to standard fetch", exc)
            return await self.fetch(count, difficulty, excluded)

        questions = self._decode(data, excluded)
        self._rng.shuffle(questions)
        result = questions[:count]
        logger.debug("Fetched %d random questions (range %d-%d)", len(result), start, end)
        if not result:
            return await self.fetch(count, difficulty, excluded)
        return result

    async def fetch(
        self,
        count: int = 25,
        difficulty: str | None = None,
        exclude_ids: Collection[str] = (),
    ) -> List[Question]:
        """Fetch the newest active questions, skipping ``exclude_ids``."""

        cfg = self.config
        excluded = set(exclude_ids)
        if len(excluded) < 100:
            limit = min(count + len(excluded) + 10, cfg.max_results_per_query)
        else:
            limit = cfg.max_results_per_query
        body = self._query_body(
            self._base_filters(difficulty),
            sort=[{"fieldName": "createdAt", "ascending": False}],
            limit=limit,
        )
        data = await asyncio.to_thread(self._request, "POST", "records/query", body)
        questions = self._decode(data, excluded)
        self._rng.shuffle(questions)
        result = questions[:count]
        logger.debug("Fetched %d questions", len(result))
        if not result:
            raise RecordStoreNoResults("no questions available")
        return result

    async def fetch_all(
        self,
        batch_handler: Callable[[List[Question]], bool],
        difficulty: str | None = None,
    ) -> int:
        """Walk the whole catalogue page by page.

        ``batch_handler`` receives each decoded page and returns ``False`` to
        stop early. Returns the number of questions handed over.
        """

        total = 0
        marker: str | None = None
        while True:
            body = self._query_body(
                self._base_filters(difficulty),
                sort=[{"fieldName": "createdAt", "ascending": True}],
                limit=self.config.max_results_per_query,
                marker=marker,
            )
            data = await asyncio.to_thread(self._request, "POST", "records/query", body)
            batch = self._decode(data, set())
            total += len(batch)
            logger.debug("Batch fetched %d questions (total %d)", len(batch), total)
            if not batch_handler(batch):
                break
            marker = data.get("continuationMarker")
            if not marker:
                break
        return total

    async def count_questions(self, difficulty: str | None = None) -> int:
        """Return the number of active questions, reading record ids only."""

        return len(await self._record_names(self._base_filters(difficulty)))

    # ------------------------------------------------------------------
    # Catalogue maintenance
    # ------------------------------------------------------------------
    async def upload_questions(
        self,
        questions: Sequence[Question],
        batch_size: int | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> UploadResult:
        """Seed the catalogue with ``questions`` as active records.

        Records are written in batches through ``records/modify``, named after
        the question id so a second upload replaces instead of duplicating.
        Each record gets a ``sortOrder`` in ``1..max_sort_order`` following
        its position, which spreads the catalogue over the windows sampled by
        :meth:`fetch_random`. A failing batch is counted as failed and the
        upload carries on.
        """

        cfg = self.config
        size = batch_size or cfg.upload_batch_size
        result = UploadResult()
        starts = range(0, len(questions), size)
        for number, start in enumerate(starts, 1):
            batch = questions[start:start + size]
            operations = [
                {
                    "operationType": "forceReplace",
                    "record": {
                        "recordName": q.id,
                        "recordType": cfg.record_type,
                        "fields": question_to_fields(q, (start + i) % cfg.max_sort_order + 1),
                    },
                }
                for i, q in enumerate(batch)
            ]
            try:
                data = await asyncio.to_thread(
                    self._request, "POST", "records/modify", {"operations": operations}
                )
            except RecordStoreNotConfigured:
                raise
            except RecordStoreError as exc:
                logger.warning("Upload batch %d/%d failed: %s", number, len(starts), exc)
                result.failed += len(batch)
            else:
                saved, failed = _count_saved(data, len(batch))
                result.saved += saved
                result.failed += failed
                logger.info("Uploaded %d/%d questions", result.saved, len(questions))
            if number < len(starts) and cfg.upload_pause_s > 0:
                await sleep(cfg.upload_pause_s)
        logger.info("Upload done: %d saved, %d failed", result.saved, result.failed)
        return result

    async def delete_all(self, batch_size: int | None = None) -> int:
        """Delete every ``Question`` record, active or not. Returns the count."""

        names = await self._record_names([_filter("isActive", "GREATER_THAN_OR_EQUALS", 0)])
        size = batch_size or self.config.upload_batch_size
        deleted = 0
        for start in range(0, len(names), size):
            operations = [
                {"operationType": "forceDelete", "record": {"recordName": name}}
                for name in names[start:start + size]
            ]
            data = await asyncio.to_thread(
                self._request, "POST", "records/modify", {"operations": operations}
            )
            deleted += _count_saved(data, len(operations))[0]
            logger.info("Deleted %d/%d records", deleted, len(names))
        return deleted

    async def check_available(self) -> bool:
        """Return ``True`` when the store accepts our credentials."""

        try:
            await asyncio.to_thread(self._request, "GET", "users/current", None)
        except RecordStoreError as exc:
            logger.info("Record store unavailable: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _base_filters(self, difficulty: str | None) -> List[Dict[str, Any]]:
        filters = [_filter("isActive", "EQUALS", 1)]
        if difficulty and difficulty != "any":
            filters.append(_filter("difficulty", "EQUALS", difficulty))
        return filters

    def _query_body(
        self,
        filters: List[Dict[str, Any]],
        *,
        sort: List[Dict[str, Any]],
        limit: int,
        desired_keys: List[str] | None = None,
        marker: str | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "query": {"recordType": self.config.record_type, "filterBy": filters, "sortBy": sort},
            "resultsLimit": limit,
        }
        if desired_keys is not None:
            body["desiredKeys"] = desired_keys
        if marker:
            body["continuationMarker"] = marker
        return body

    async def _record_names(self, filters: List[Dict[str, Any]]) -> List[str]:
        names: List[str] = []
        marker: str | None = None
        while True:
            body = self._query_body(
                filters,
                sort=[],
                limit=self.config.max_results_per_query,
                desired_keys=[],
                marker=marker,
            )
            data = await asyncio.to_thread(self._request, "POST", "records/query", body)
            for record in data.get("records") or []:
                if isinstance(record, dict):
                    names.append(str(record.get("recordName", "")))
            marker = data.get("continuationMarker")
            if not marker:
                return names

    def _decode(self, data: Dict[str, Any], excluded: set[str]) -> List[Question]:
        questions: List[Question] = []
        for record in data.get("records") or []:
            if not isinstance(record, dict) or record.get("recordName") in excluded:
                continue
            q = record_to_question(record)
            if q is not None:
                questions.append(q)
        return questions

    def _request(self, method: str, path: str, body: Dict[str, Any] | None) -> Dict[str, Any]:
        cfg = self.config
        if not cfg.base_url:
            raise RecordStoreNotConfigured("record store URL not configured")
        url = f"{cfg.base_url.rstrip('/')}/{path}"
        params = {"ckAPIToken": cfg.api_token} if cfg.api_token else None

        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(cfg.retries),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        )
        try:
            for attempt in retrying:
                with attempt:
                    response = self.session.request(
                        method, url, json=body, params=params, timeout=cfg.timeout_s
                    )
        except requests.RequestException as exc:
            raise RecordStoreNetworkError(str(exc)) from exc

        status = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None

        code = data.get("serverErrorCode") if isinstance(data, dict) else None
        if status in (401, 403) or code in _PERMISSION_CODES:
            raise RecordStorePermissionDenied(f"access denied ({status}, {code})")
        if status >= 500 or code in _SERVER_CODES:
            raise RecordStoreServerError(f"server error ({status}, {code})")
        if status >= 400 or code:
            raise RecordStoreServerError(f"request rejected ({status}, {code})")
        if not isinstance(data, dict):
            raise RecordStoreServerError("invalid JSON response")
        return data


def _filter(field: str, comparator: str, value: Any) -> Dict[str, Any]:
    return {"fieldName": field, "comparator": comparator, "fieldValue": {"value": value}}


def _count_saved(data: Dict[str, Any], expected: int) -> tuple[int, int]:
    """Split a ``records/modify`` answer into (succeeded, failed) counts."""

    saved = failed = 0
    for record in data.get("records") or []:
        if isinstance(record, dict) and not record.get("serverErrorCode"):
            saved += 1
        else:
            failed += 1
            if failed <= 3:
                logger.debug("Record operation failed: %r", record)
    return saved, failed + max(0, expected - saved - failed)


__all__ = ["RecordStoreClient", "UploadResult", "question_to_fields", "record_to_question"]
