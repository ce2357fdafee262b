import json
import logging
import re
from typing import Any, Dict, List, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import AIDecodeError
from .schemas import FeedbackPayload, GeneratedQuestion, GeneratedQuestionSet

_log = logging.getLogger(__name__)

# Central caps for model output
MAX_LIST_ITEMS = 8
MAX_ITEM_LEN = 300
MAX_NARRATIVE_LEN = 4000
MAX_QUESTION_LEN = 2000
MAX_OPTION_LEN = 255
MIN_OPTIONS = 2

_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", flags=re.DOTALL)
# A backslash not starting a valid JSON escape
_INVALID_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')

_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}

_M = TypeVar("_M", bound=BaseModel)


def strip_code_fences(text: str) -> str:
    t = (text or "").strip()
    m = _FENCE.match(t)
    if m:
        return m.group(1).strip()
    if t.startswith("```"):
        # unterminated fence
        t = t.strip("`")
        if t.lower().startswith("json"):
            t = t[4:]
        return t.strip()
    return t


def repair_control_chars(text: str) -> str:
    """Escape raw control characters that appear inside JSON string literals."""
    out: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ord(ch) < 0x20:
                out.append(_ESCAPES.get(ch, "\\u%04x" % ord(ch)))
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` block in ``text``."""
    start = text.find("{")
    if start < 0:
        raise AIDecodeError("no JSON object in model output")
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    raise AIDecodeError("unterminated JSON object in model output")


def parse_json_object(text: str) -> Dict[str, Any]:
    cleaned = repair_control_chars(strip_code_fences(text))
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as je:
        if "Invalid \\escape" in str(je):
            cleaned = _INVALID_ESCAPE.sub(r"\\\\", cleaned)
        else:
            cleaned = extract_json_object(cleaned)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as err:
            raise AIDecodeError(f"unparsable model output: {err}") from err
    if not isinstance(data, dict):
        raise AIDecodeError("model output is not a JSON object")
    return data


def decode_payload(text: str, model: Type[_M]) -> _M:
    """Decode provider text into ``model``; required fields are enforced."""
    data = parse_json_object(text)
    try:
        return model.model_validate(data)
    except ValidationError as err:
        missing = [".".join(str(p) for p in e["loc"]) for e in err.errors()]
        raise AIDecodeError(f"{model.__name__} invalid fields: {', '.join(missing)}") from err


def _clip_list(values: List[Any]) -> List[str]:
    items = [str(v).strip() for v in values if str(v).strip()]
    return [v[:MAX_ITEM_LEN] for v in items[:MAX_LIST_ITEMS]]


def sanitize_feedback(payload: FeedbackPayload) -> FeedbackPayload:
    return FeedbackPayload(
        strengths=_clip_list(payload.strengths),
        improvements=_clip_list(payload.improvements),
        nextSteps=payload.nextSteps.strip()[:MAX_NARRATIVE_LEN],
        detailedFeedback=payload.detailedFeedback.strip()[:MAX_NARRATIVE_LEN],
        badge=payload.badge.strip()[:MAX_ITEM_LEN],
    )


def validate_generated_question(q: GeneratedQuestion) -> Tuple[bool, List[str]]:
    from .grading import QuestionKind, normalize_kind

    reasons: List[str] = []
    text = q.questionText.strip()
    if not text:
        reasons.append("question_empty")
    elif len(text) > MAX_QUESTION_LEN:
        reasons.append("question_too_long")

    kind = normalize_kind(q.type)
    if kind == QuestionKind.MULTIPLE_CHOICE:
        options = [str(o) for o in (q.options or [])]
        if len(options) < MIN_OPTIONS:
            reasons.append("choices_count")
        if len(set(options)) != len(options):
            reasons.append("choices_unique")
        if any(not o.strip() or len(o) > MAX_OPTION_LEN for o in options):
            reasons.append("choices_len")
        if q.correctAnswer is None or q.correctAnswer not in options:
            reasons.append("correct_answer")
    if q.points < 0:
        reasons.append("points")
    return not reasons, reasons


def filter_generated_questions(batch: GeneratedQuestionSet) -> List[GeneratedQuestion]:
    kept: List[GeneratedQuestion] = []
    for q in batch.questions:
        ok, reasons = validate_generated_question(q)
        if ok:
            kept.append(q)
        else:
            _log.warning("generated_question_dropped reasons=%s text=%.60r", ",".join(reasons), q.questionText)
    return kept
