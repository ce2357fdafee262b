import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import analytics, questions, stages, users
from .ai_client import AIClient, ClientResult, create_ai_client
from .auth import get_current_user, require_admin
from .cache import TTLCache
from .config import Settings, current_settings
from .db import Base, engine, get_db
from .errors import QAQuestError
from .evaluation import submit_evaluation
from .feedback import feedback_by_id, feedback_for_attempt, feedback_for_stage
from .models import User
from .schemas import (
    AnalyticsResponse,
    ErrorResponse,
    FeedbackEnvelope,
    FeedbackListResponse,
    FeedbackOut,
    ProgressListResponse,
    QuestionCreate,
    QuestionDetail,
    QuestionListResponse,
    QuestionOut,
    QuestionsStatusOut,
    StageCreate,
    StageListResponse,
    StageMutationResponse,
    StageOut,
    StageProgressOut,
    StageUpdate,
    StageWithProgress,
    SubmitEvaluationRequest,
    SubmitEvaluationResponse,
    UnlockDebugResponse,
    UserOut,
)

_settings = current_settings()
logging.basicConfig(
    level=getattr(logging, _settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
_log = logging.getLogger("qaquest")

app = FastAPI(title="QA Quest")

# CORS: use explicit origins to keep headers valid in browsers
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.frontend_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

Base.metadata.create_all(bind=engine)


@lru_cache(maxsize=1)
def _client_result() -> ClientResult:
    result = create_ai_client(current_settings())
    if not result.ok:
        _log.warning("ai_client_unavailable reason=%s", result.error)
    return result


def get_ai_client() -> Optional[AIClient]:
    return _client_result().client


@lru_cache(maxsize=1)
def get_analytics_cache() -> TTLCache:
    s = current_settings()
    return TTLCache(ttl_seconds=s.cache_ttl_s, max_entries=s.cache_max_entries)


@app.exception_handler(QAQuestError)
def _qaquest_error(request: Request, exc: QAQuestError):
    if exc.status_code >= 500:
        _log.error("request_failed path=%s error=%s detail=%s", request.url.path, exc.classification, exc.detail)
    body = ErrorResponse(error=exc.classification, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.get("/health")
def health():
    return {"ok": True}


# --- Stages -----------------------------------------------------------------


@app.get("/stages", response_model=StageListResponse)
def list_stages(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return StageListResponse(stages=stages.stages_with_progress(db, user.id))


@app.get("/stages/debug/unlocking", response_model=UnlockDebugResponse)
def debug_unlocking(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return stages.unlock_debug(db, user.id)


@app.get("/stages/{stage_id}", response_model=StageWithProgress)
def get_stage(stage_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return stages.stage_detail(db, stage_id, user.id)


@app.get("/stages/{stage_id}/progress", response_model=StageProgressOut)
def get_stage_progress(stage_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return stages.stage_progress(db, stage_id, user.id)


@app.get("/stages/{stage_id}/questions", response_model=QuestionListResponse)
def get_stage_questions(stage_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    stages.get_stage(db, stage_id, active_only=True)
    rows = questions.stage_questions(db, stage_id)
    return QuestionListResponse(questions=[QuestionOut.model_validate(q) for q in rows])


@app.get("/stages/{stage_id}/questions-status", response_model=QuestionsStatusOut)
def get_questions_status(stage_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return stages.questions_status(db, stage_id)


@app.post("/stages", response_model=StageMutationResponse, status_code=201)
def create_stage(
    req: StageCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    client: Optional[AIClient] = Depends(get_ai_client),
    settings: Settings = Depends(current_settings),
):
    details = stages.generate_stage_details(client, req, timeout=settings.generation_timeout_s)
    stage = stages.create_stage(db, req, details)
    return StageMutationResponse(message="Stage created successfully", stage=StageOut.model_validate(stage))


@app.patch("/stages/{stage_id}", response_model=StageMutationResponse)
def update_stage(
    stage_id: int, req: StageUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)
):
    stage = stages.update_stage(db, stage_id, req)
    return StageMutationResponse(message="Stage updated successfully", stage=StageOut.model_validate(stage))


# --- Questions --------------------------------------------------------------


@app.post("/questions", response_model=QuestionDetail, status_code=201)
def create_question(req: QuestionCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return QuestionDetail.model_validate(questions.create_question(db, req))


@app.get("/questions/generate", response_model=QuestionListResponse)
def generate_questions(
    stage_id: int = Query(..., alias="stageId", gt=0),
    open_count: Optional[int] = Query(None, alias="openCount", ge=0, le=20),
    closed_count: Optional[int] = Query(None, alias="closedCount", ge=0, le=20),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[AIClient] = Depends(get_ai_client),
    settings: Settings = Depends(current_settings),
):
    stage = stages.get_stage(db, stage_id)
    rows = questions.generate_questions(
        db,
        stage_id,
        stage.open_questions if open_count is None else open_count,
        stage.closed_questions if closed_count is None else closed_count,
        client,
        timeout=settings.generation_timeout_s,
    )
    return QuestionListResponse(questions=[QuestionOut.model_validate(q) for q in rows])


@app.get("/questions/{question_id}", response_model=QuestionDetail)
def get_question(question_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return QuestionDetail.model_validate(questions.get_question(db, question_id))


# --- Evaluation and feedback -----------------------------------------------


@app.post("/feedback/attempts", response_model=SubmitEvaluationResponse, status_code=201)
def submit_attempt(
    req: SubmitEvaluationRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: Optional[AIClient] = Depends(get_ai_client),
    settings: Settings = Depends(current_settings),
    cache: TTLCache = Depends(get_analytics_cache),
):
    result = submit_evaluation(db, user.id, req, client=client, settings=settings, analytics_cache=cache)
    return SubmitEvaluationResponse(feedback_id=result.feedback_id, attempt_id=result.attempt_id)


@app.get("/feedback/attempts/{attempt_id}", response_model=FeedbackEnvelope)
def get_attempt_feedback(attempt_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return FeedbackEnvelope(data=FeedbackOut.model_validate(feedback_for_attempt(db, attempt_id, user.id)))


@app.get("/feedback/stages/{stage_id}", response_model=FeedbackListResponse)
def get_stage_feedback(stage_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = feedback_for_stage(db, stage_id, user.id)
    return FeedbackListResponse(feedbacks=[FeedbackOut.model_validate(r) for r in rows])


@app.get("/feedback/{feedback_id}", response_model=FeedbackEnvelope)
def get_feedback(feedback_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return FeedbackEnvelope(data=FeedbackOut.model_validate(feedback_by_id(db, feedback_id, user.id)))


# --- Users and analytics ---------------------------------------------------


@app.get("/users/me", response_model=UserOut)
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return users.profile(db, user)


@app.get("/users/progress", response_model=ProgressListResponse)
def my_progress(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ProgressListResponse(progress=users.progress(db, user.id))


@app.get("/skills/analytics", response_model=AnalyticsResponse)
def skills_analytics(
    time_filter: str = Query("all", alias="timeFilter"),
    stage_id: Optional[int] = Query(None, alias="stageId", gt=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_analytics_cache),
):
    return analytics.skills_analytics(db, user.id, time_filter=time_filter, stage_id=stage_id, cache=cache)
