import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .ai_client import AIClient
from .db import UnitOfWork
from .errors import AIDecodeError, AIServiceError, AIUnavailable, InvalidRequest, NotFound
from .grading import QuestionKind, normalize_kind
from .guardrails import MIN_OPTIONS, decode_payload, filter_generated_questions
from .models import Question, Stage
from .prompts import question_generation_messages
from .schemas import GeneratedQuestionSet, QuestionCreate

_log = logging.getLogger(__name__)


def stage_questions(db: Session, stage_id: int) -> List[Question]:
    return db.query(Question).filter(Question.stage_id == stage_id).order_by(Question.id.asc()).all()


def get_question(db: Session, question_id: int) -> Question:
    question = db.query(Question).filter(Question.id == question_id).one_or_none()
    if question is None:
        raise NotFound("Question not found")
    return question


def _refresh_question_count(db: Session, stage: Stage) -> None:
    stage.question_count = (
        db.query(func.count(Question.id)).filter(Question.stage_id == stage.id).scalar() or 0
    )


def create_question(db: Session, data: QuestionCreate) -> Question:
    kind = normalize_kind(data.type)
    if kind == QuestionKind.MULTIPLE_CHOICE:
        options = data.options or []
        if len(options) < MIN_OPTIONS:
            raise InvalidRequest(f"Multiple-choice questions need at least {MIN_OPTIONS} options")
        if data.correct_answer not in options:
            raise InvalidRequest("correct_answer must be the text of one of the options")

    with UnitOfWork(db) as uow:
        stage = db.query(Stage).filter(Stage.id == data.stage_id).one_or_none()
        if stage is None:
            raise NotFound("Stage not found")
        question = Question(
            stage_id=stage.id,
            type=kind,
            question_text=data.question_text,
            options=list(data.options) if kind == QuestionKind.MULTIPLE_CHOICE else None,
            correct_answer=data.correct_answer if kind == QuestionKind.MULTIPLE_CHOICE else None,
            points=data.points,
            category=data.category,
            difficulty=data.difficulty,
        )
        uow.add(question)
        uow.flush()
        _refresh_question_count(db, stage)
    db.refresh(question)
    return question


def generate_questions(
    db: Session,
    stage_id: int,
    open_count: int,
    closed_count: int,
    client: Optional[AIClient],
    timeout: float,
) -> List[Question]:
    """Ask the provider for a question set and persist the usable ones."""
    stage = db.query(Stage).filter(Stage.id == stage_id).one_or_none()
    if stage is None:
        raise NotFound("Stage not found")
    if client is None:
        raise AIUnavailable("Question generation is not available right now")

    messages = question_generation_messages(
        stage.title, stage.difficulty, open_count, closed_count, stage.considerations
    )
    try:
        batch = decode_payload(client.complete(messages, timeout=timeout), GeneratedQuestionSet)
    except AIServiceError as err:
        _log.error("question_generation_failed stage_id=%s reason=%s", stage_id, err)
        raise AIUnavailable("The AI service is not available, please try again later", str(err)) from err
    except AIDecodeError as err:
        _log.error("question_generation_unparsable stage_id=%s reason=%s", stage_id, err)
        raise AIUnavailable("The AI service returned an invalid question set", str(err)) from err

    usable = filter_generated_questions(batch)
    with UnitOfWork(db) as uow:
        saved: List[Question] = []
        for q in usable:
            kind = normalize_kind(q.type)
            row = Question(
                stage_id=stage.id,
                type=kind,
                question_text=q.questionText.strip(),
                options=list(q.options) if kind == QuestionKind.MULTIPLE_CHOICE else None,
                correct_answer=q.correctAnswer if kind == QuestionKind.MULTIPLE_CHOICE else None,
                points=q.points,
                category=q.category,
                difficulty=q.difficulty or stage.difficulty,
            )
            uow.add(row)
            saved.append(row)
        uow.flush()
        _refresh_question_count(db, stage)
    for row in saved:
        db.refresh(row)
    _log.info("questions_generated stage_id=%s saved=%s dropped=%s", stage_id, len(saved), len(batch.questions) - len(saved))
    return saved
