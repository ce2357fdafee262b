import threading

from qaquest.errors import AIServiceError
from qaquest.grading import (
    QuestionKind,
    QuestionSnapshot,
    grade_answer,
    grade_batch,
    normalize_kind,
    parse_option_index,
    resolve_selected_option,
    score_percentage,
)

from .conftest import FakeAIClient, grade_json


def _mc(id=1, options=("Unit", "Integration", "System"), correct="Integration", points=2):
    return QuestionSnapshot(
        id=id,
        type="multiple-choice",
        question_text="Which level?",
        options=tuple(options),
        correct_answer=correct,
        points=points,
    )


def _open(id=10, points=3):
    return QuestionSnapshot(
        id=id,
        type="open-text",
        question_text="Explain regression testing.",
        options=None,
        correct_answer=None,
        points=points,
    )


def test_kind_aliases_normalize():
    assert normalize_kind("multiple_choice") == QuestionKind.MULTIPLE_CHOICE
    assert normalize_kind("choice") == QuestionKind.MULTIPLE_CHOICE
    assert normalize_kind("text") == QuestionKind.OPEN_TEXT
    assert normalize_kind(None) == QuestionKind.OPEN_TEXT


def test_parse_option_index_takes_leading_integer():
    assert parse_option_index("2") == 2
    assert parse_option_index(" 1abc") == 1
    assert parse_option_index("abc") is None
    assert parse_option_index("") is None


def test_out_of_range_index_selects_nothing():
    assert resolve_selected_option(["a", "b"], "2") is None
    assert resolve_selected_option(["a", "b"], "-1") is None
    assert resolve_selected_option(None, "0") is None


def test_multiple_choice_compares_option_text():
    outcome = grade_answer(_mc(), "1", client=None, timeout=1)
    assert outcome.is_correct is True
    assert outcome.points_earned == 2
    assert outcome.selected_option == "Integration"

    wrong = grade_answer(_mc(), "0", client=None, timeout=1)
    assert wrong.is_correct is False
    assert wrong.points_earned == 0


def test_duplicate_option_texts_both_count_as_correct():
    q = _mc(options=("Yes", "No", "Yes"), correct="Yes")
    assert grade_answer(q, "0", None, 1).is_correct
    assert grade_answer(q, "2", None, 1).is_correct


def test_open_text_uses_provider_verdict():
    client = FakeAIClient([grade_json(True)])
    outcome = grade_answer(_open(), "Re-running tests after a change", client, timeout=5)
    assert outcome.is_correct is True
    assert outcome.points_earned == 3
    assert len(client.calls) == 1


def test_open_text_fails_closed_on_provider_error(caplog):
    client = FakeAIClient([AIServiceError("timed out")])
    with caplog.at_level("WARNING"):
        outcome = grade_answer(_open(), "anything", client, timeout=5)
    assert outcome.is_correct is False
    assert outcome.points_earned == 0
    assert outcome.degraded is True
    assert "open_grading_fallback" in caplog.text


def test_open_text_fails_closed_on_unparsable_verdict():
    client = FakeAIClient(["I think it is fine"])
    outcome = grade_answer(_open(), "anything", client, timeout=5)
    assert outcome.is_correct is False
    assert outcome.degraded is True


def test_open_text_verdict_without_explanation_fails_closed():
    client = FakeAIClient(['{"isCorrect": true}'])
    outcome = grade_answer(_open(), "anything", client, timeout=5)
    assert outcome.is_correct is False
    assert outcome.points_earned == 0
    assert outcome.degraded is True


def test_open_text_without_client_is_incorrect():
    outcome = grade_answer(_open(), "anything", None, timeout=5)
    assert outcome.is_correct is False


def test_batch_keeps_input_order_and_runs_open_items_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    def respond(messages):
        # both open items must be in flight at once to pass the barrier
        barrier.wait()
        return grade_json("good" in messages[1]["content"])

    client = FakeAIClient(respond)
    items = [
        (_open(id=1), "good answer"),
        (_mc(id=2), "1"),
        (_open(id=3), "bad answer"),
    ]
    outcomes = grade_batch(items, client, timeout=5, max_workers=2)
    assert [o.is_correct for o in outcomes] == [True, True, False]


def test_score_rounds_half_up():
    assert score_percentage(3, 4) == 75
    assert score_percentage(2, 3) == 67
    assert score_percentage(1, 8) == 13
    assert score_percentage(0, 5) == 0
    assert score_percentage(0, 0) == 0
