import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .ai_client import AIClient
from .errors import AIDecodeError, AIServiceError
from .guardrails import decode_payload
from .prompts import open_grading_messages
from .schemas import OpenGradePayload

_log = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class QuestionKind:
    OPEN_TEXT = "open-text"
    MULTIPLE_CHOICE = "multiple-choice"

    OPEN_ALIASES = frozenset({"open-text", "open_text", "text"})
    CHOICE_ALIASES = frozenset({"multiple-choice", "multiple_choice", "choice"})


def normalize_kind(raw: Optional[str]) -> str:
    t = (raw or "").strip().lower()
    if t in QuestionKind.CHOICE_ALIASES:
        return QuestionKind.MULTIPLE_CHOICE
    return QuestionKind.OPEN_TEXT


def parse_option_index(raw: str) -> Optional[int]:
    """Leading integer of ``raw`` ("2", " 2", "2abc" -> 2); None when there is none."""
    m = _LEADING_INT.match(raw or "")
    return int(m.group(1)) if m else None


def resolve_selected_option(options: Optional[Sequence[str]], raw_answer: str) -> Optional[str]:
    idx = parse_option_index(raw_answer)
    if idx is None or not options or not (0 <= idx < len(options)):
        return None
    return options[idx]


@dataclass(frozen=True)
class QuestionSnapshot:
    """Detached copy of a Question row, safe to hand to worker threads."""

    id: int
    type: str
    question_text: str
    options: Optional[Tuple[str, ...]]
    correct_answer: Optional[str]
    points: int
    category: Optional[str] = None
    difficulty: Optional[str] = None

    @classmethod
    def from_model(cls, q) -> "QuestionSnapshot":
        return cls(
            id=q.id,
            type=q.type,
            question_text=q.question_text,
            options=tuple(str(o) for o in q.options) if q.options else None,
            correct_answer=q.correct_answer,
            points=int(q.points or 0),
            category=q.category,
            difficulty=q.difficulty,
        )

    @property
    def is_multiple_choice(self) -> bool:
        return normalize_kind(self.type) == QuestionKind.MULTIPLE_CHOICE


@dataclass
class GradeOutcome:
    is_correct: bool
    points_earned: int
    selected_option: Optional[str] = None
    explanation: Optional[str] = None
    degraded: bool = False


def grade_multiple_choice(question, raw_answer: str) -> GradeOutcome:
    # Correctness is text equality against the stored answer, not index equality.
    selected = resolve_selected_option(question.options, raw_answer)
    correct = selected is not None and selected == question.correct_answer
    return GradeOutcome(
        is_correct=correct,
        points_earned=int(question.points or 0) if correct else 0,
        selected_option=selected,
    )


def grade_open_text(question, answer: str, client: Optional[AIClient], timeout: float) -> GradeOutcome:
    """Delegate to the text-generation provider; any failure grades the item incorrect."""
    if client is None:
        _log.warning("open_grading_fallback question_id=%s reason=no_client", question.id)
        return GradeOutcome(is_correct=False, points_earned=0, degraded=True)

    messages = open_grading_messages(
        question.question_text,
        answer,
        question.category or "General",
        question.difficulty or "intermediate",
    )
    try:
        verdict = decode_payload(client.complete(messages, timeout=timeout), OpenGradePayload)
    except (AIServiceError, AIDecodeError) as err:
        _log.warning("open_grading_fallback question_id=%s reason=%s", question.id, err)
        return GradeOutcome(is_correct=False, points_earned=0, degraded=True)

    return GradeOutcome(
        is_correct=verdict.isCorrect,
        points_earned=int(question.points or 0) if verdict.isCorrect else 0,
        explanation=verdict.explanation or None,
    )


def grade_answer(question, raw_answer: str, client: Optional[AIClient], timeout: float) -> GradeOutcome:
    if normalize_kind(question.type) == QuestionKind.MULTIPLE_CHOICE:
        return grade_multiple_choice(question, raw_answer)
    return grade_open_text(question, raw_answer, client, timeout)


def grade_batch(
    items: Sequence[Tuple[object, str]],
    client: Optional[AIClient],
    timeout: float,
    max_workers: int = 4,
) -> List[GradeOutcome]:
    """Grade ``(question, raw_answer)`` pairs, keeping input order.

    Multiple-choice items are graded inline; open-text items are independent
    provider calls and run on a small thread pool.
    """
    outcomes: Dict[int, GradeOutcome] = {}
    open_items: List[int] = []
    for pos, (question, raw) in enumerate(items):
        if normalize_kind(question.type) == QuestionKind.MULTIPLE_CHOICE:
            outcomes[pos] = grade_multiple_choice(question, raw)
        else:
            open_items.append(pos)

    if len(open_items) == 1 or (open_items and max_workers <= 1):
        for pos in open_items:
            question, raw = items[pos]
            outcomes[pos] = grade_open_text(question, raw, client, timeout)
    elif open_items:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(open_items))) as pool:
            futures = {
                pos: pool.submit(grade_open_text, items[pos][0], items[pos][1], client, timeout)
                for pos in open_items
            }
            for pos, fut in futures.items():
                outcomes[pos] = fut.result()

    return [outcomes[pos] for pos in range(len(items))]


def score_percentage(correct_count: int, total: int) -> int:
    """round(100 * correct / total), halves rounded up (2/3 -> 67, 1/8 -> 13)."""
    if total <= 0:
        return 0
    return (200 * correct_count + total) // (2 * total)
