"""Evaluation submission: grade a batch of answers and record the outcome.

The workflow runs as one transaction::

    VALIDATING -> GRADING -> PERSISTING -> SCORING -> PROGRESS_UPDATE
               -> AGGREGATE_UPDATE -> COMMITTED

Any failure before the commit rolls back the attempt, its responses and every
progress/aggregate change. Feedback is produced afterwards, best effort, in its
own transaction so that a provider or storage hiccup there cannot undo a
committed evaluation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from .ai_client import AIClient
from .cache import TTLCache
from .config import Settings
from .db import UnitOfWork
from .errors import Conflict, IdentityMismatch, InvalidRequest, NotFound, PersistenceFailure
from .feedback import ResponseDetail, generate_feedback
from .grading import GradeOutcome, QuestionSnapshot, grade_batch, score_percentage
from .models import EvaluationAttempt, Feedback, Question, Stage, User, UserResponse, UserStage
from .schemas import SubmitEvaluationRequest

_log = logging.getLogger(__name__)

PASS_THRESHOLD = 60


class SubmissionState(str, Enum):
    VALIDATING = "validating"
    GRADING = "grading"
    PERSISTING = "persisting"
    SCORING = "scoring"
    PROGRESS_UPDATE = "progress_update"
    AGGREGATE_UPDATE = "aggregate_update"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class SubmissionResult:
    attempt_id: str
    attempt_row_id: int
    score: int
    correct_count: int
    total: int
    passed: bool
    first_completion: bool
    global_score: int
    current_stage_id: Optional[int]
    feedback_id: Optional[int] = None
    feedback_degraded: bool = False
    state: SubmissionState = SubmissionState.COMMITTED
    details: List[ResponseDetail] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def positive_int(value: Any) -> Optional[int]:
    """Accept 3, "3" or 3.0; reject bools, zero, negatives and junk."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        n = value
    elif isinstance(value, float) and value.is_integer():
        n = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
        n = int(value.strip())
    else:
        return None
    return n if n > 0 else None


def submit_evaluation(
    db: Session,
    auth_user_id: int,
    req: SubmitEvaluationRequest,
    *,
    client: Optional[AIClient],
    settings: Settings,
    analytics_cache: Optional[TTLCache] = None,
) -> SubmissionResult:
    state = SubmissionState.VALIDATING
    try:
        with UnitOfWork(db) as uow:
            user_id, stage, user, pairs = _validate(uow, auth_user_id, req)

            state = SubmissionState.GRADING
            snapshots = [(QuestionSnapshot.from_model(q), raw) for q, raw in pairs]
            outcomes = grade_batch(
                snapshots,
                client,
                timeout=settings.grading_timeout_s,
                max_workers=settings.grading_workers,
            )
            correct_count = sum(1 for o in outcomes if o.is_correct)
            total = len(outcomes)

            state = SubmissionState.PERSISTING
            now = _utcnow()
            attempt = EvaluationAttempt(
                attempt_id=req.attempt_id,
                user_id=user_id,
                stage_id=stage.id,
                start_time=now - timedelta(seconds=req.time_spent),
                end_time=now,
                time_spent_seconds=req.time_spent,
                is_completed=True,
                score=0,
            )
            uow.add(attempt)
            uow.flush()
            details = _persist_responses(uow, attempt, user_id, snapshots, outcomes)

            state = SubmissionState.SCORING
            score = score_percentage(correct_count, total)
            attempt.score = score

            state = SubmissionState.PROGRESS_UPDATE
            passed = score >= PASS_THRESHOLD
            first_completion = upsert_progress(uow, user_id, stage.id, score, now)

            state = SubmissionState.AGGREGATE_UPDATE
            global_score, current_stage_id = update_aggregate(uow, user, stage, passed)

            attempt_row_id = attempt.id
            stage_id = stage.id
            stage_title = stage.title
        state = SubmissionState.COMMITTED
    except Exception:
        _log.warning(
            "submission_%s attempt_id=%s user_id=%s failed_in=%s",
            SubmissionState.ROLLED_BACK.value,
            req.attempt_id,
            auth_user_id,
            state.value,
        )
        raise

    _log.info(
        "submission_committed attempt_id=%s user_id=%s stage_id=%s score=%s correct=%s/%s passed=%s",
        req.attempt_id,
        user_id,
        stage_id,
        score,
        correct_count,
        total,
        passed,
    )
    if analytics_cache is not None:
        analytics_cache.invalidate(lambda k: getattr(k, "user_id", None) == user_id)

    result = SubmissionResult(
        attempt_id=req.attempt_id,
        attempt_row_id=attempt_row_id,
        score=score,
        correct_count=correct_count,
        total=total,
        passed=passed,
        first_completion=first_completion,
        global_score=global_score,
        current_stage_id=current_stage_id,
        details=details,
    )
    _attach_feedback(db, result, user_id, stage_id, stage_title, client, settings)
    return result


def _validate(
    uow: UnitOfWork, auth_user_id: int, req: SubmitEvaluationRequest
) -> Tuple[int, Stage, User, List[Tuple[Question, str]]]:
    db = uow.session

    user_id = positive_int(req.user_id)
    if user_id is None:
        raise InvalidRequest("Invalid user ID")
    if user_id != auth_user_id:
        raise IdentityMismatch("User ID mismatch")
    stage_id = positive_int(req.stage_id)
    if stage_id is None:
        raise InvalidRequest("Invalid stage ID")

    user = db.query(User).filter(User.id == user_id).with_for_update().one_or_none()
    if user is None:
        raise NotFound("User not found")
    stage = db.query(Stage).filter(Stage.id == stage_id).one_or_none()
    if stage is None:
        raise NotFound("Stage not found")

    if db.query(EvaluationAttempt.id).filter(EvaluationAttempt.attempt_id == req.attempt_id).first():
        raise Conflict("Attempt already submitted", req.attempt_id)

    stage_questions = db.query(Question).filter(Question.stage_id == stage_id).all()
    if not stage_questions:
        raise InvalidRequest(
            f"No questions available for stage {stage_id}. Please generate questions first."
        )
    questions_by_id = {q.id: q for q in stage_questions}

    parsed = [positive_int(r.question_id) for r in req.responses]
    if not parsed or all(qid is None for qid in parsed):
        raise InvalidRequest("No valid question IDs provided")
    if not any(qid in questions_by_id for qid in parsed):
        raise InvalidRequest("No valid questions found")

    pairs: List[Tuple[Question, str]] = []
    for r, qid in zip(req.responses, parsed):
        question = questions_by_id.get(qid) if qid is not None else None
        if question is None:
            raise InvalidRequest(f"Invalid question ID: {r.question_id}")
        pairs.append((question, r.answer))
    return user_id, stage, user, pairs


def _persist_responses(
    uow: UnitOfWork,
    attempt: EvaluationAttempt,
    user_id: int,
    graded: List[Tuple[QuestionSnapshot, str]],
    outcomes: List[GradeOutcome],
) -> List[ResponseDetail]:
    details: List[ResponseDetail] = []
    for (question, raw), outcome in zip(graded, outcomes):
        uow.add(
            UserResponse(
                attempt_id=attempt.id,
                question_id=question.id,
                user_id=user_id,
                response=raw,
                is_correct=outcome.is_correct,
                points_earned=outcome.points_earned,
            )
        )
        details.append(
            ResponseDetail(
                question_id=question.id,
                question_text=question.question_text,
                is_multiple_choice=question.is_multiple_choice,
                answer=raw,
                is_correct=outcome.is_correct,
                points_earned=outcome.points_earned,
                selected_option=outcome.selected_option,
                correct_answer=question.correct_answer if question.is_multiple_choice else None,
            )
        )
    uow.flush()
    return details


def upsert_progress(uow: UnitOfWork, user_id: int, stage_id: int, score: int, now: datetime) -> bool:
    """Record ``score`` for (user, stage); returns True when this flips completion on.

    The stored score never decreases and a completed stage never reverts. The
    row is read under a row lock; a concurrent first insert for the same pair
    hits the unique constraint and fails the transaction as retryable.
    """
    db = uow.session
    passed = score >= PASS_THRESHOLD
    row = (
        db.query(UserStage)
        .filter(UserStage.user_id == user_id, UserStage.stage_id == stage_id)
        .with_for_update()
        .one_or_none()
    )
    if row is None:
        uow.add(
            UserStage(
                user_id=user_id,
                stage_id=stage_id,
                is_completed=passed,
                score=score,
                completed_at=now if passed else None,
            )
        )
        uow.flush()
        return passed

    first_completion = False
    if passed and not row.is_completed:
        row.is_completed = True
        row.completed_at = now
        first_completion = True
    if score > (row.score or 0):
        row.score = score
    uow.flush()
    return first_completion


def update_aggregate(uow: UnitOfWork, user: User, stage: Stage, passed: bool) -> Tuple[int, Optional[int]]:
    db = uow.session
    total = (
        db.query(func.coalesce(func.sum(UserStage.score), 0))
        .filter(UserStage.user_id == user.id, UserStage.is_completed.is_(True))
        .scalar()
    )
    user.global_score = int(total or 0)

    if passed:
        next_stage = (
            db.query(Stage)
            .filter(Stage.display_order == stage.display_order + 1, Stage.is_active.is_(True))
            .first()
        )
        if next_stage is not None:
            user.current_stage_id = next_stage.id
    uow.flush()
    return user.global_score, user.current_stage_id


def _attach_feedback(
    db: Session,
    result: SubmissionResult,
    user_id: int,
    stage_id: int,
    stage_title: str,
    client: Optional[AIClient],
    settings: Settings,
) -> None:
    generated = generate_feedback(
        result.details,
        result.score,
        result.correct_count,
        result.total,
        stage_title,
        client,
        timeout=settings.feedback_timeout_s,
    )
    payload = generated.payload
    row = Feedback(
        attempt_id=result.attempt_row_id,
        user_id=user_id,
        stage_id=stage_id,
        score=result.score,
        total_questions=result.total,
        correct_answers=result.correct_count,
        strengths=list(payload.strengths),
        improvements=list(payload.improvements),
        next_steps=payload.nextSteps,
        detailed_feedback=payload.detailedFeedback,
        badge=payload.badge,
    )
    try:
        with UnitOfWork(db) as uow:
            uow.add(row)
            uow.flush()
            feedback_id = row.id
    except PersistenceFailure as err:
        _log.error("feedback_not_saved attempt_id=%s error=%s", result.attempt_id, err.detail)
        return
    result.feedback_id = feedback_id
    result.feedback_degraded = generated.degraded
