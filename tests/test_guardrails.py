import pytest

from qaquest.errors import AIDecodeError
from qaquest.guardrails import (
    MAX_LIST_ITEMS,
    MAX_ITEM_LEN,
    decode_payload,
    extract_json_object,
    filter_generated_questions,
    repair_control_chars,
    sanitize_feedback,
    strip_code_fences,
    validate_generated_question,
)
from qaquest.schemas import FeedbackPayload, GeneratedQuestion, GeneratedQuestionSet, OpenGradePayload


def test_strip_code_fences_handles_json_fence():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'


def test_repair_escapes_raw_newlines_inside_strings_only():
    raw = '{"explanation": "line one\nline two"}\n'
    fixed = repair_control_chars(raw)
    assert fixed == '{"explanation": "line one\\nline two"}\n'


def test_extract_json_object_skips_surrounding_prose():
    text = 'Sure! Here it is: {"isCorrect": true, "explanation": "has } brace"} thanks'
    assert extract_json_object(text) == '{"isCorrect": true, "explanation": "has } brace"}'


def test_decode_payload_accepts_fenced_and_chatty_output():
    verdict = decode_payload('```json\n{"isCorrect": false, "explanation": "off topic"}\n```', OpenGradePayload)
    assert verdict.isCorrect is False
    verdict = decode_payload('Result: {"isCorrect": true, "explanation": "fine"}', OpenGradePayload)
    assert verdict.isCorrect is True


def test_decode_payload_repairs_invalid_backslash_escape():
    verdict = decode_payload('{"isCorrect": true, "explanation": "use C:\\path"}', OpenGradePayload)
    assert verdict.explanation == "use C:\\path"


def test_decode_payload_rejects_missing_required_fields():
    with pytest.raises(AIDecodeError) as err:
        decode_payload('{"strengths": []}', FeedbackPayload)
    assert "nextSteps" in str(err.value)


def test_open_grade_verdict_requires_explanation():
    with pytest.raises(AIDecodeError) as err:
        decode_payload('{"isCorrect": true}', OpenGradePayload)
    assert "explanation" in str(err.value)


def test_decode_payload_rejects_non_json():
    with pytest.raises(AIDecodeError):
        decode_payload("no json here", OpenGradePayload)


def test_sanitize_feedback_caps_lists_and_items():
    payload = FeedbackPayload(
        strengths=["x" * 1000] + [f"s{i}" for i in range(20)],
        improvements=["  ", "focus"],
        nextSteps=" next ",
        detailedFeedback="detail",
        badge="QA Expert",
    )
    clean = sanitize_feedback(payload)
    assert len(clean.strengths) == MAX_LIST_ITEMS
    assert len(clean.strengths[0]) == MAX_ITEM_LEN
    assert clean.improvements == ["focus"]
    assert clean.nextSteps == "next"


def test_generated_multiple_choice_needs_matching_correct_answer():
    ok, reasons = validate_generated_question(
        GeneratedQuestion(type="multiple-choice", questionText="Pick one", options=["A", "B"], correctAnswer="C")
    )
    assert ok is False
    assert "correct_answer" in reasons


def test_generated_question_filter_drops_invalid_items():
    batch = GeneratedQuestionSet(
        questions=[
            GeneratedQuestion(type="open-text", questionText="What is a test oracle?"),
            GeneratedQuestion(type="multiple-choice", questionText="Dup", options=["A", "A"], correctAnswer="A"),
            GeneratedQuestion(type="multiple_choice", questionText="Ok", options=["A", "B"], correctAnswer="B"),
        ]
    )
    kept = filter_generated_questions(batch)
    assert [q.questionText for q in kept] == ["What is a test oracle?", "Ok"]
