import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from .ai_client import AIClient
from .errors import AIDecodeError, AIServiceError, NotFound
from .guardrails import decode_payload, sanitize_feedback
from .models import Feedback
from .prompts import feedback_messages
from .schemas import FeedbackPayload

_log = logging.getLogger(__name__)

# (inclusive lower bound, badge), highest first
BADGE_LADDER = (
    (96, "QA Master"),
    (81, "QA Expert"),
    (61, "QA Practitioner"),
    (41, "QA Apprentice"),
    (0, "QA Novice"),
)
LOWEST_BADGE = BADGE_LADDER[-1][1]


def badge_for_score(score: int) -> str:
    for lower, badge in BADGE_LADDER:
        if score >= lower:
            return badge
    return LOWEST_BADGE


@dataclass
class ResponseDetail:
    question_id: int
    question_text: str
    is_multiple_choice: bool
    answer: str
    is_correct: bool
    points_earned: int
    selected_option: Optional[str] = None
    correct_answer: Optional[str] = None


@dataclass
class FeedbackResult:
    payload: FeedbackPayload
    degraded: bool = False


def fallback_feedback() -> FeedbackPayload:
    return FeedbackPayload(
        strengths=["You completed the evaluation", "You are committed to learning QA"],
        improvements=["Review the core concepts of this stage", "Practise with more exercises"],
        nextSteps="Keep practising and review the stage material before your next attempt.",
        detailedFeedback=(
            "We could not generate detailed feedback for this attempt. "
            "Your answers and score have been saved."
        ),
        badge=LOWEST_BADGE,
    )


def generate_feedback(
    details: Sequence[ResponseDetail],
    score: int,
    correct_count: int,
    total: int,
    stage_title: str,
    client: Optional[AIClient],
    timeout: float,
) -> FeedbackResult:
    """Synthesize feedback for a scored attempt; never raises on provider trouble."""
    if client is None:
        _log.warning("feedback_fallback stage=%r reason=no_client", stage_title)
        return FeedbackResult(fallback_feedback(), degraded=True)

    messages = feedback_messages(stage_title, score, correct_count, total, details)
    try:
        raw = client.complete(messages, timeout=timeout)
        payload = sanitize_feedback(decode_payload(raw, FeedbackPayload))
    except (AIServiceError, AIDecodeError) as err:
        _log.warning("feedback_fallback stage=%r reason=%s", stage_title, err)
        return FeedbackResult(fallback_feedback(), degraded=True)

    # The badge always follows the fixed ladder, whatever the model proposed.
    payload.badge = badge_for_score(score)
    return FeedbackResult(payload)


def feedback_by_id(db: Session, feedback_id: int, user_id: int) -> Feedback:
    row = db.query(Feedback).filter(Feedback.id == feedback_id, Feedback.user_id == user_id).one_or_none()
    if row is None:
        raise NotFound("Feedback not found")
    return row


def feedback_for_attempt(db: Session, attempt_row_id: int, user_id: int) -> Feedback:
    row = (
        db.query(Feedback)
        .filter(Feedback.attempt_id == attempt_row_id, Feedback.user_id == user_id)
        .order_by(Feedback.id.desc())
        .first()
    )
    if row is None:
        raise NotFound("Feedback not found for this attempt")
    return row


def feedback_for_stage(db: Session, stage_id: int, user_id: int) -> List[Feedback]:
    """Every feedback row the user has for a stage, newest first."""
    return (
        db.query(Feedback)
        .filter(Feedback.stage_id == stage_id, Feedback.user_id == user_id)
        .order_by(Feedback.created_at.desc(), Feedback.id.desc())
        .all()
    )
