from typing import List

from sqlalchemy.orm import Session

from .models import User, UserStage
from .schemas import StageProgressOut, UserOut
from .stages import first_active_stage_id


def profile(db: Session, user: User) -> UserOut:
    completed = [
        stage_id
        for (stage_id,) in db.query(UserStage.stage_id)
        .filter(UserStage.user_id == user.id, UserStage.is_completed.is_(True))
        .order_by(UserStage.stage_id.asc())
        .all()
    ]
    return UserOut(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        global_score=user.global_score or 0,
        current_stage_id=user.current_stage_id or first_active_stage_id(db),
        completed_stages=completed,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def progress(db: Session, user_id: int) -> List[StageProgressOut]:
    rows = (
        db.query(UserStage)
        .filter(UserStage.user_id == user_id)
        .order_by(UserStage.stage_id.asc())
        .all()
    )
    return [
        StageProgressOut(
            stage_id=r.stage_id,
            stage_title=r.stage.title if r.stage else None,
            is_completed=bool(r.is_completed),
            score=r.score,
            completed_at=r.completed_at,
        )
        for r in rows
    ]
