import pytest

from qaquest.errors import AIServiceError
from qaquest.feedback import (
    LOWEST_BADGE,
    ResponseDetail,
    badge_for_score,
    fallback_feedback,
    generate_feedback,
)

from .conftest import FakeAIClient, feedback_json


def _details():
    return [
        ResponseDetail(
            question_id=1,
            question_text="Which level?",
            is_multiple_choice=True,
            answer="1",
            is_correct=True,
            points_earned=1,
            selected_option="Integration",
            correct_answer="Integration",
        ),
        ResponseDetail(
            question_id=2,
            question_text="Explain smoke testing.",
            is_multiple_choice=False,
            answer="A quick check",
            is_correct=False,
            points_earned=0,
        ),
    ]


@pytest.mark.parametrize(
    "score,badge",
    [
        (0, "QA Novice"),
        (40, "QA Novice"),
        (41, "QA Apprentice"),
        (60, "QA Apprentice"),
        (61, "QA Practitioner"),
        (80, "QA Practitioner"),
        (81, "QA Expert"),
        (95, "QA Expert"),
        (96, "QA Master"),
        (100, "QA Master"),
    ],
)
def test_badge_ladder_boundaries(score, badge):
    assert badge_for_score(score) == badge


def test_fallback_is_complete_and_lowest_tier():
    payload = fallback_feedback()
    assert payload.strengths and payload.improvements
    assert payload.nextSteps and payload.detailedFeedback
    assert payload.badge == LOWEST_BADGE


def test_provider_feedback_keeps_text_but_badge_follows_score():
    client = FakeAIClient([feedback_json(badge="QA Master")])
    result = generate_feedback(_details(), 50, 1, 2, "Testing Basics", client, timeout=5)
    assert result.degraded is False
    assert result.payload.strengths == ["Solid grasp of test levels"]
    assert result.payload.badge == "QA Apprentice"


def test_prompt_mentions_selected_option_text():
    client = FakeAIClient([feedback_json()])
    generate_feedback(_details(), 50, 1, 2, "Testing Basics", client, timeout=5)
    prompt = client.calls[0][1]["content"]
    assert "Selected: Integration" in prompt
    assert "Answer: A quick check" in prompt


@pytest.mark.parametrize("reply", ["not json at all", '{"strengths": ["only"]}', AIServiceError("boom")])
def test_bad_provider_output_falls_back(reply, caplog):
    client = FakeAIClient([reply])
    with caplog.at_level("WARNING"):
        result = generate_feedback(_details(), 90, 2, 2, "Testing Basics", client, timeout=5)
    assert result.degraded is True
    assert result.payload == fallback_feedback()
    assert "feedback_fallback" in caplog.text


def test_no_client_falls_back():
    result = generate_feedback(_details(), 90, 2, 2, "Testing Basics", None, timeout=5)
    assert result.degraded is True
    assert result.payload.badge == LOWEST_BADGE
