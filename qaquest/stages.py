import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .ai_client import AIClient
from .db import UnitOfWork
from .errors import AIDecodeError, AIServiceError, Conflict, InvalidRequest, NotFound
from .grading import QuestionKind
from .guardrails import decode_payload
from .models import Question, Stage, UserStage
from .prompts import stage_details_messages
from .schemas import (
    QuestionsStatusOut,
    StageCreate,
    StageDetailsPayload,
    StageOut,
    StageProgressOut,
    StageUpdate,
    StageWithProgress,
    UnlockDebugResponse,
    UnlockDebugStage,
)
from .unlock import completion_map, is_stage_unlocked

_log = logging.getLogger(__name__)

DIFFICULTIES = ("beginner", "intermediate", "advanced")


def list_active_stages(db: Session) -> List[Stage]:
    return db.query(Stage).filter(Stage.is_active.is_(True)).order_by(Stage.display_order.asc()).all()


def first_active_stage_id(db: Session) -> Optional[int]:
    """Id of the active stage with the lowest display order, the starting point for new players."""
    row = db.query(Stage.id).filter(Stage.is_active.is_(True)).order_by(Stage.display_order.asc()).first()
    return row[0] if row else None


def get_stage(db: Session, stage_id: int, active_only: bool = False) -> Stage:
    q = db.query(Stage).filter(Stage.id == stage_id)
    if active_only:
        q = q.filter(Stage.is_active.is_(True))
    stage = q.one_or_none()
    if stage is None:
        raise NotFound("Stage not found")
    return stage


def user_progress_rows(db: Session, user_id: int) -> List[UserStage]:
    return db.query(UserStage).filter(UserStage.user_id == user_id).all()


def _progress_out(row: Optional[UserStage], stage_id: int, stage_title: Optional[str] = None) -> StageProgressOut:
    if row is None:
        return StageProgressOut(stage_id=stage_id, stage_title=stage_title)
    return StageProgressOut(
        stage_id=row.stage_id,
        stage_title=stage_title,
        is_completed=bool(row.is_completed),
        score=row.score,
        completed_at=row.completed_at,
    )


def _with_progress(stage: Stage, row: Optional[UserStage], unlocked: Optional[bool] = None) -> StageWithProgress:
    base = StageOut.model_validate(stage).model_dump()
    return StageWithProgress(
        **base,
        is_completed=bool(row.is_completed) if row else False,
        user_score=row.score if row else None,
        completed_at=row.completed_at if row else None,
        is_unlocked=unlocked,
    )


def stages_with_progress(db: Session, user_id: int) -> List[StageWithProgress]:
    stages = list_active_stages(db)
    rows = user_progress_rows(db, user_id)
    by_stage: Dict[int, UserStage] = {r.stage_id: r for r in rows}
    completed = completion_map(rows)
    return [_with_progress(s, by_stage.get(s.id), is_stage_unlocked(s, stages, completed)) for s in stages]


def stage_detail(db: Session, stage_id: int, user_id: int) -> StageWithProgress:
    stage = get_stage(db, stage_id, active_only=True)
    row = (
        db.query(UserStage)
        .filter(UserStage.user_id == user_id, UserStage.stage_id == stage_id)
        .one_or_none()
    )
    return _with_progress(stage, row)


def stage_progress(db: Session, stage_id: int, user_id: int) -> StageProgressOut:
    row = (
        db.query(UserStage)
        .filter(UserStage.user_id == user_id, UserStage.stage_id == stage_id)
        .one_or_none()
    )
    if row is None:
        return _progress_out(None, stage_id)
    return _progress_out(row, stage_id, row.stage.title if row.stage else None)


def unlock_debug(db: Session, user_id: int) -> UnlockDebugResponse:
    stages = list_active_stages(db)
    rows = user_progress_rows(db, user_id)
    by_stage = {r.stage_id: r for r in rows}
    completed = completion_map(rows)
    entries = []
    for s in stages:
        row = by_stage.get(s.id)
        entries.append(
            UnlockDebugStage(
                id=s.id,
                title=s.title,
                display_order=s.display_order,
                is_completed=bool(row.is_completed) if row else False,
                is_unlocked=is_stage_unlocked(s, stages, completed),
                user_score=row.score if row else None,
                completed_at=row.completed_at if row else None,
                progress=_progress_out(row, s.id) if row else None,
            )
        )
    return UnlockDebugResponse(
        user_id=user_id,
        total_stages=len(stages),
        completed_stages=[r.stage_id for r in rows if r.is_completed],
        all_progress=[_progress_out(r, r.stage_id) for r in rows],
        stages=entries,
    )


def _ensure_order_free(db: Session, display_order: int, exclude_id: Optional[int] = None) -> None:
    q = db.query(Stage.id).filter(Stage.display_order == display_order, Stage.is_active.is_(True))
    if exclude_id is not None:
        q = q.filter(Stage.id != exclude_id)
    if q.first() is not None:
        raise Conflict("Another active stage with this display order already exists")


def generate_stage_details(
    client: Optional[AIClient], data: StageCreate, timeout: float
) -> Optional[StageDetailsPayload]:
    if client is None:
        return None
    messages = stage_details_messages(data.title, data.description, data.difficulty, data.considerations)
    try:
        return decode_payload(client.complete(messages, timeout=timeout), StageDetailsPayload)
    except (AIServiceError, AIDecodeError) as err:
        _log.warning("stage_details_skipped title=%r reason=%s", data.title, err)
        return None


def create_stage(db: Session, data: StageCreate, details: Optional[StageDetailsPayload] = None) -> Stage:
    if data.difficulty not in DIFFICULTIES:
        raise InvalidRequest("Invalid difficulty. Must be one of: " + ", ".join(DIFFICULTIES))

    with UnitOfWork(db) as uow:
        if db.query(Stage.id).filter(Stage.title == data.title).first() is not None:
            raise Conflict("A stage with this title already exists")
        if data.is_active:
            _ensure_order_free(db, data.display_order)

        stage = Stage(
            title=data.title,
            description=data.description,
            difficulty=data.difficulty,
            icon=data.icon,
            color=data.color,
            estimated_time=data.estimated_time,
            display_order=data.display_order,
            is_active=data.is_active,
            considerations=data.considerations,
            total_questions=data.total_questions,
            open_questions=data.open_questions,
            closed_questions=data.closed_questions,
            question_count=0,
        )
        if details is not None:
            stage.topics_covered = list(details.topicsCovered)
            stage.what_to_expect = details.whatToExpect
            stage.tips_for_success = list(details.tipsForSuccess)
            stage.evaluation_description = details.evaluationDescription
        uow.add(stage)
        uow.flush()
    db.refresh(stage)
    _log.info("stage_created id=%s display_order=%s", stage.id, stage.display_order)
    return stage


def update_stage(db: Session, stage_id: int, data: StageUpdate) -> Stage:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("difficulty") is not None and changes["difficulty"] not in DIFFICULTIES:
        raise InvalidRequest("Invalid difficulty. Must be one of: " + ", ".join(DIFFICULTIES))

    with UnitOfWork(db):
        stage = get_stage(db, stage_id)
        new_order = changes.get("display_order")
        if new_order is None:
            new_order = stage.display_order
        becomes_active = changes.get("is_active")
        if becomes_active is None:
            becomes_active = stage.is_active
        order_changed = new_order != stage.display_order
        activated = becomes_active and not stage.is_active
        if becomes_active and (order_changed or activated):
            _ensure_order_free(db, new_order, exclude_id=stage.id)
        for key, value in changes.items():
            if value is not None:
                setattr(stage, key, value)
    db.refresh(stage)
    return stage


def questions_status(db: Session, stage_id: int) -> QuestionsStatusOut:
    stage = get_stage(db, stage_id)
    types = [t for (t,) in db.query(Question.type).filter(Question.stage_id == stage_id).all()]
    open_count = sum(1 for t in types if (t or "").lower() in QuestionKind.OPEN_ALIASES)
    closed_count = sum(1 for t in types if (t or "").lower() in QuestionKind.CHOICE_ALIASES)
    return QuestionsStatusOut(
        stage_id=stage.id,
        stage_title=stage.title,
        total_questions=len(types),
        open_questions=open_count,
        closed_questions=closed_count,
        expected_open=stage.open_questions,
        expected_closed=stage.closed_questions,
        has_questions=len(types) > 0,
        is_complete=len(types) >= stage.open_questions + stage.closed_questions,
    )
