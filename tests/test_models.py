import pytest

from fakes import make_question
from RetroTrivia.src.exceptions import InvalidQuestionError
from RetroTrivia.src.kv_store import MemoryStore
from RetroTrivia.src.models import Difficulty, FilterConfiguration, Question, SourceTag


def test_question_defaults():
    q = Question(question="Who sang 'Billie Jean'?", options=["Michael Jackson", "Prince", "David Bowie", "Madonna"], correct_index=0)
    assert q.options == ("Michael Jackson", "Prince", "David Bowie", "Madonna")
    assert q.category is None
    assert q.difficulty is None
    assert q.source is SourceTag.BUNDLE
    assert q.id
    assert q.correct_answer == "Michael Jackson"


def test_generated_ids_are_unique():
    ids = {Question(question="q", options=("a", "b", "c", "d"), correct_index=1).id for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.parametrize(
    "options, correct",
    [
        (("a", "b", "c"), 0),
        (("a", "b", "c", "d", "e"), 0),
        (("a", "b", "c", "d"), 4),
        (("a", "b", "c", "d"), -1),
        (("a", "b", "c", "d"), True),
    ],
)
def test_question_rejects_invalid_shapes(options, correct):
    with pytest.raises(InvalidQuestionError):
        Question(question="q", options=options, correct_index=correct)


def test_from_dict_minimal_fields_defaults_to_bundle():
    q = Question.from_dict(
        {"id": "q1", "question": "Who sang Purple Rain?", "options": ["Prince", "Bowie", "Elton", "Springsteen"], "correctIndex": 0}
    )
    assert q.id == "q1"
    assert q.source is SourceTag.BUNDLE
    assert q.difficulty is None


def test_from_dict_unknown_source_defaults_to_bundle():
    q = Question.from_dict(
        {"id": "q2", "question": "Test?", "options": ["A", "B", "C", "D"], "correctIndex": 2, "source": "carrier-pigeon"}
    )
    assert q.source is SourceTag.BUNDLE


def test_from_dict_missing_field_raises():
    with pytest.raises(InvalidQuestionError):
        Question.from_dict({"id": "x", "options": ["A", "B", "C", "D"], "correctIndex": 0})


def test_to_dict_keeps_all_fields():
    q = Question(
        id="rt-1", question="Round trip?", options=("A", "B", "C", "D"), correct_index=3,
        category="Music", difficulty="medium", source=SourceTag.RECORD_STORE,
    )
    assert Question.from_dict(q.to_dict()) == q


def test_matches_is_case_insensitive():
    q = make_question("h", difficulty="Hard")
    assert q.matches(Difficulty.HARD)
    assert q.matches("HARD")
    assert q.matches(Difficulty.ANY)
    assert not q.matches(Difficulty.EASY)
    assert not make_question("n").matches(Difficulty.EASY)


def test_difficulty_helpers():
    assert [d.value for d in Difficulty] == ["any", "easy", "medium", "hard"]
    assert Difficulty.ANY.api_value is None
    assert Difficulty.MEDIUM.api_value == "medium"
    assert Difficulty.HARD.display_name == "Hard"
    assert Difficulty.from_str("EASY") is Difficulty.EASY
    assert Difficulty.from_str("impossible") is Difficulty.ANY
    assert Difficulty.from_str(None) is Difficulty.ANY


def test_filter_configuration_round_trip():
    store = MemoryStore()
    assert FilterConfiguration.load(store) == FilterConfiguration()
    FilterConfiguration(difficulty=Difficulty.HARD, enable_online_questions=False).save(store)
    loaded = FilterConfiguration.load(store)
    assert loaded.difficulty is Difficulty.HARD
    assert loaded.enable_online_questions is False


@pytest.mark.parametrize("value", [3, 2.5, True, ["easy"], {"level": "easy"}, ""])
def test_difficulty_from_non_string_values(value):
    assert Difficulty.from_str(value) is Difficulty.ANY


def test_filter_configuration_tolerates_corrupt_difficulty():
    store = MemoryStore({"trivia.filter.difficulty": 5, "trivia.filter.onlineQuestions": "yes"})
    loaded = FilterConfiguration.load(store)
    assert loaded.difficulty is Difficulty.ANY
    assert loaded.enable_online_questions is True
