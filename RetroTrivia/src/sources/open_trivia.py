"""Client for the Open Trivia Database (https://opentdb.com).

The API hands out session tokens so that a player does not see the same
question twice, returns HTML-escaped text and throttles clients that call
it more than once every few seconds.
"""

from __future__ import annotations

import asyncio
import html
import logging
import random
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config import OpenTriviaConfig
from ..exceptions import (
    InvalidQuestionError,
    OpenTriviaDecodingError,
    OpenTriviaError,
    OpenTriviaInvalidParameter,
    OpenTriviaInvalidResponse,
    OpenTriviaNetworkError,
    OpenTriviaNoResults,
    OpenTriviaRateLimited,
    OpenTriviaTokenExhausted,
    OpenTriviaTokenNotFound,
)
from ..models import Question, SourceTag
from ..rate_limiter import RequestCooldown


logger = logging.getLogger(__name__)

MUSIC_CATEGORY = 12


def decode_entities(text: str) -> str:
    """Decode named and numeric HTML entities in ``text``."""

    return html.unescape(text)


def shuffle_options(
    correct: str, incorrect: List[str], rng: random.Random | None = None
) -> tuple[List[str], int]:
    """Mix ``correct`` into ``incorrect`` and return ``(options, correct_index)``."""

    options = list(incorrect) + [correct]
    (rng or random).shuffle(options)
    return options, options.index(correct)


class OpenTriviaClient:
    """Fetch multiple choice questions from Open Trivia DB."""

    source = SourceTag.OPEN_TRIVIA

    def __init__(
        self,
        config: OpenTriviaConfig,
        session: requests.Session | None = None,
        rng: random.Random | None = None,
        cooldown: RequestCooldown | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self._rng = rng or random.Random()
        self.cooldown = cooldown or RequestCooldown(config.rate_limit_cooldown_s, clock=clock)
        self.session_token: str | None = None

    async def fetch(
        self,
        amount: int = 20,
        category: int = MUSIC_CATEGORY,
        difficulty: str | None = None,
    ) -> List[Question]:
        """Fetch ``amount`` questions for ``category``.

        Raises a subclass of :class:`OpenTriviaError` on any failure.
        """

        await self.cooldown.wait()

        if self.session_token is None:
            await self.request_token()

        params: Dict[str, Any] = {"amount": amount, "category": category, "type": "multiple"}
        if difficulty and difficulty != "any":
            params["difficulty"] = difficulty
        if self.session_token:
            params["token"] = self.session_token

        logger.debug("Fetching questions from Open Trivia DB: %s", params)
        response = await asyncio.to_thread(self._get, self.config.base_url, params)
        self.cooldown.hit()

        if response.status_code != 200:
            raise OpenTriviaInvalidResponse(f"HTTP {response.status_code}")

        questions = await self._parse(response)
        logger.debug("Fetched %d questions from Open Trivia DB", len(questions))
        return questions

    async def request_token(self) -> str:
        """Ask the API for a new session token."""

        response = await asyncio.to_thread(
            self._get, self.config.token_url, {"command": "request"}
        )
        data = self._json(response)
        token = data.get("token")
        if data.get("response_code") != 0 or not token:
            raise OpenTriviaInvalidResponse("token request refused")
        self.session_token = str(token)
        logger.debug("Acquired new Open Trivia session token")
        return self.session_token

    async def reset_token(self) -> None:
        """Reset the current token so its question history starts over."""

        token = self.session_token
        if token is None:
            return
        try:
            response = await asyncio.to_thread(
                self._get, self.config.token_url, {"command": "reset", "token": token}
            )
            data = self._json(response)
        except OpenTriviaError as exc:
            logger.info("Token reset failed (%s), dropping token", exc)
            self.session_token = None
            return
        if data.get("response_code") == 0:
            logger.debug("Open Trivia session token reset")
        else:
            self.session_token = None

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _get(self, url: str, params: Dict[str, Any]) -> requests.Response:
        try:
            return self.session.get(url, params=params, timeout=self.config.timeout_s)
        except requests.RequestException as exc:
            raise OpenTriviaNetworkError(str(exc)) from exc

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise OpenTriviaDecodingError(str(exc)) from exc
        if not isinstance(data, dict):
            raise OpenTriviaDecodingError("expected a JSON object")
        return data

    async def _parse(self, response: requests.Response) -> List[Question]:
        data = self._json(response)
        code = data.get("response_code")
        if code == 1:
            raise OpenTriviaNoResults("no questions available with current filters")
        if code == 2:
            raise OpenTriviaInvalidParameter("invalid API parameter")
        if code == 3:
            self.session_token = None
            raise OpenTriviaTokenNotFound("session token not found")
        if code == 4:
            await self.reset_token()
            raise OpenTriviaTokenExhausted("all questions in session have been used")
        if code == 5:
            # Start over with a fresh session and a full cooldown.
            self.session_token = None
            self.cooldown.hit()
            raise OpenTriviaRateLimited("API rate limit exceeded")
        if code != 0:
            raise OpenTriviaInvalidResponse(f"unexpected response code {code!r}")

        results = data.get("results")
        if not isinstance(results, list) or not results:
            raise OpenTriviaNoResults("empty result set")

        questions: List[Question] = []
        for item in results:
            q = self._convert(item)
            if q is not None:
                questions.append(q)
        if not questions:
            raise OpenTriviaNoResults("no usable question in result set")
        return questions

    def _convert(self, item: Any) -> Optional[Question]:
        try:
            correct = decode_entities(item["correct_answer"])
            incorrect = [decode_entities(a) for a in item["incorrect_answers"]]
            options, correct_index = shuffle_options(correct, incorrect, self._rng)
            return Question(
                id=str(uuid.uuid4()),
                question=decode_entities(item["question"]),
                options=tuple(options),
                correct_index=correct_index,
                category=item.get("category"),
                difficulty=item.get("difficulty"),
                source=SourceTag.OPEN_TRIVIA,
            )
        except (KeyError, TypeError, AttributeError, InvalidQuestionError) as exc:
            logger.debug("Skipping malformed Open Trivia result: %s", exc)
            return None


__all__ = ["OpenTriviaClient", "MUSIC_CATEGORY", "decode_entities", "shuffle_options"]
