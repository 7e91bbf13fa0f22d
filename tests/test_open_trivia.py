import asyncio
import random

import pytest
import requests

from fakes import FakeClock, FakeResponse, FakeSession
from RetroTrivia.src.config import OpenTriviaConfig
from RetroTrivia.src.exceptions import (
    OpenTriviaDecodingError,
    OpenTriviaInvalidParameter,
    OpenTriviaInvalidResponse,
    OpenTriviaNetworkError,
    OpenTriviaNoResults,
    OpenTriviaRateLimited,
    OpenTriviaTokenExhausted,
    OpenTriviaTokenNotFound,
)
from RetroTrivia.src.models import SourceTag
from RetroTrivia.src.rate_limiter import RequestCooldown
from RetroTrivia.src.sources.open_trivia import OpenTriviaClient, decode_entities, shuffle_options

TOKEN = FakeResponse({"response_code": 0, "token": "tok-1"})


def api_result(question="Who sang &quot;Thriller&quot;?", correct="Michael Jackson", difficulty="easy"):
    return {
        "type": "multiple",
        "difficulty": difficulty,
        "category": "Entertainment: Music",
        "question": question,
        "correct_answer": correct,
        "incorrect_answers": ["Prince", "Madonna", "Sting &amp; The Police"],
    }


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_client(*responses, clock=None, sleep=None):
    clock = clock or FakeClock(100.0)
    cooldown = RequestCooldown(5.0, clock=clock, sleep=sleep or RecordingSleep())
    session = FakeSession(*responses)
    client = OpenTriviaClient(OpenTriviaConfig(), session=session, rng=random.Random(3), cooldown=cooldown)
    return client, session


def test_fetch_decodes_and_shuffles():
    client, session = make_client(TOKEN, FakeResponse({"response_code": 0, "results": [api_result()]}))
    questions = asyncio.run(client.fetch(amount=5, category=12, difficulty="easy"))

    assert len(questions) == 1
    q = questions[0]
    assert q.question == 'Who sang "Thriller"?'
    assert q.correct_answer == "Michael Jackson"
    assert "Sting & The Police" in q.options
    assert len(q.options) == 4
    assert q.difficulty == "easy"
    assert q.source is SourceTag.OPEN_TRIVIA

    token_call, fetch_call = session.calls
    assert token_call["params"] == {"command": "request"}
    assert fetch_call["params"] == {
        "amount": 5, "category": 12, "type": "multiple", "difficulty": "easy", "token": "tok-1",
    }
    assert fetch_call["timeout"] == 15.0


def test_fetch_without_difficulty_omits_parameter():
    client, session = make_client(TOKEN, FakeResponse({"response_code": 0, "results": [api_result()]}))
    asyncio.run(client.fetch(amount=5, category=12, difficulty=None))
    assert "difficulty" not in session.calls[1]["params"]


def test_token_is_reused_between_calls():
    ok = {"response_code": 0, "results": [api_result()]}
    client, session = make_client(TOKEN, FakeResponse(ok), FakeResponse(ok))
    asyncio.run(client.fetch())
    asyncio.run(client.fetch())
    assert len(session.calls) == 3


def test_cooldown_spaces_requests():
    clock = FakeClock(100.0)
    sleep = RecordingSleep()
    ok = {"response_code": 0, "results": [api_result()]}
    client, _ = make_client(TOKEN, FakeResponse(ok), FakeResponse(ok), clock=clock, sleep=sleep)
    asyncio.run(client.fetch())
    clock.advance(2.0)
    asyncio.run(client.fetch())
    assert sleep.delays == [pytest.approx(3.0)]


@pytest.mark.parametrize(
    "code, error",
    [
        (1, OpenTriviaNoResults),
        (2, OpenTriviaInvalidParameter),
        (3, OpenTriviaTokenNotFound),
        (5, OpenTriviaRateLimited),
        (42, OpenTriviaInvalidResponse),
    ],
)
def test_response_codes_map_to_errors(code, error):
    client, _ = make_client(TOKEN, FakeResponse({"response_code": code, "results": []}))
    with pytest.raises(error):
        asyncio.run(client.fetch())


def test_rate_limit_drops_token_and_rearms_cooldown():
    clock = FakeClock(100.0)
    client, _ = make_client(TOKEN, FakeResponse({"response_code": 5}), clock=clock)
    with pytest.raises(OpenTriviaRateLimited):
        asyncio.run(client.fetch())
    assert client.session_token is None
    assert client.cooldown.remaining() == pytest.approx(5.0)


def test_token_not_found_drops_token():
    client, _ = make_client(TOKEN, FakeResponse({"response_code": 3}))
    with pytest.raises(OpenTriviaTokenNotFound):
        asyncio.run(client.fetch())
    assert client.session_token is None


def test_token_exhausted_resets_token():
    client, session = make_client(
        TOKEN, FakeResponse({"response_code": 4}), FakeResponse({"response_code": 0})
    )
    with pytest.raises(OpenTriviaTokenExhausted):
        asyncio.run(client.fetch())
    assert session.calls[-1]["params"] == {"command": "reset", "token": "tok-1"}
    assert client.session_token == "tok-1"


def test_empty_results_raise_no_results():
    client, _ = make_client(TOKEN, FakeResponse({"response_code": 0, "results": []}))
    with pytest.raises(OpenTriviaNoResults):
        asyncio.run(client.fetch())


def test_http_error_status():
    client, _ = make_client(TOKEN, FakeResponse({}, status_code=503))
    with pytest.raises(OpenTriviaInvalidResponse):
        asyncio.run(client.fetch())


def test_network_failure():
    client, _ = make_client(TOKEN, requests.ConnectionError("offline"))
    with pytest.raises(OpenTriviaNetworkError):
        asyncio.run(client.fetch())


def test_timeout_is_a_network_failure():
    client, _ = make_client(requests.Timeout("slow"))
    with pytest.raises(OpenTriviaNetworkError):
        asyncio.run(client.fetch())


def test_undecodable_body():
    client, _ = make_client(TOKEN, FakeResponse(ValueError("bad json")))
    with pytest.raises(OpenTriviaDecodingError):
        asyncio.run(client.fetch())


def test_malformed_results_are_skipped():
    broken = {"question": "no answers"}
    three_options = dict(api_result(), incorrect_answers=["x", "y"])
    client, _ = make_client(
        TOKEN, FakeResponse({"response_code": 0, "results": [broken, three_options, api_result()]})
    )
    questions = asyncio.run(client.fetch())
    assert len(questions) == 1


def test_decode_entities_handles_named_and_numeric():
    assert decode_entities("Guns N&#039; Roses &amp; Co") == "Guns N' Roses & Co"
    assert decode_entities("Beyonc&eacute; &#8220;Halo&#8221;") == "Beyoncé “Halo”"


def test_shuffle_options_tracks_correct_answer():
    rng = random.Random(11)
    for _ in range(20):
        options, idx = shuffle_options("right", ["w1", "w2", "w3"], rng)
        assert sorted(options) == ["right", "w1", "w2", "w3"]
        assert options[idx] == "right"
