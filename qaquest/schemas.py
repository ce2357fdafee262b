from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint, field_validator

# one evaluation never legitimately lasts longer than a week
MAX_TIME_SPENT_S = 7 * 86_400


# --- Stages -----------------------------------------------------------------


class StageCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    difficulty: str  # 'beginner' | 'intermediate' | 'advanced'
    icon: str
    color: str
    estimated_time: str
    display_order: int
    is_active: bool = True
    considerations: Optional[str] = None
    total_questions: conint(ge=0) = 10
    open_questions: conint(ge=0) = 5
    closed_questions: conint(ge=0) = 5


class StageUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    difficulty: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    estimated_time: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None
    considerations: Optional[str] = None
    total_questions: Optional[conint(ge=0)] = None
    open_questions: Optional[conint(ge=0)] = None
    closed_questions: Optional[conint(ge=0)] = None


class StageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    difficulty: str
    icon: Optional[str] = None
    color: Optional[str] = None
    estimated_time: Optional[str] = None
    question_count: int = 0
    is_active: bool
    display_order: int
    considerations: Optional[str] = None
    topics_covered: Optional[List[str]] = None
    what_to_expect: Optional[str] = None
    tips_for_success: Optional[List[str]] = None
    evaluation_description: Optional[str] = None
    total_questions: int
    open_questions: int
    closed_questions: int


class StageWithProgress(StageOut):
    is_completed: bool = False
    user_score: Optional[int] = None
    completed_at: Optional[datetime] = None
    is_unlocked: Optional[bool] = None


class StageListResponse(BaseModel):
    stages: List[StageWithProgress]


class StageMutationResponse(BaseModel):
    message: str
    stage: StageOut


class StageProgressOut(BaseModel):
    stage_id: int
    stage_title: Optional[str] = None
    is_completed: bool = False
    score: Optional[int] = None
    completed_at: Optional[datetime] = None


class QuestionsStatusOut(BaseModel):
    stage_id: int
    stage_title: str
    total_questions: int
    open_questions: int
    closed_questions: int
    expected_open: int
    expected_closed: int
    has_questions: bool
    is_complete: bool


class UnlockDebugStage(BaseModel):
    id: int
    title: str
    display_order: int
    is_completed: bool
    is_unlocked: bool
    user_score: Optional[int] = None
    completed_at: Optional[datetime] = None
    progress: Optional[StageProgressOut] = None


class UnlockDebugResponse(BaseModel):
    user_id: int
    total_stages: int
    completed_stages: List[int]
    all_progress: List[StageProgressOut]
    stages: List[UnlockDebugStage]


# --- Questions --------------------------------------------------------------


class QuestionCreate(BaseModel):
    stage_id: conint(gt=0)
    type: str
    question_text: str = Field(min_length=1)
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    points: conint(ge=0) = 1
    category: Optional[str] = None
    difficulty: Optional[str] = None


class QuestionOut(BaseModel):
    """Client-safe question: no correct answer."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    stage_id: int
    type: str
    question_text: str
    options: Optional[List[str]] = None
    points: int
    category: Optional[str] = None
    difficulty: Optional[str] = None


class QuestionDetail(QuestionOut):
    correct_answer: Optional[str] = None


class QuestionListResponse(BaseModel):
    questions: List[QuestionOut]


# --- Evaluation submission --------------------------------------------------


class AnswerIn(BaseModel):
    # kept loose so malformed ids reach validation instead of a 422
    question_id: Any = None
    answer: str = ""

    @field_validator("answer", mode="before")
    @classmethod
    def _stringify_answer(cls, v):
        # multiple-choice clients send the option index as a number
        return "" if v is None else str(v)


class SubmitEvaluationRequest(BaseModel):
    attempt_id: str = Field(min_length=1)
    user_id: Any = None
    stage_id: Any = None
    time_spent: conint(ge=0, le=MAX_TIME_SPENT_S) = 0
    responses: List[AnswerIn] = Field(default_factory=list)


class SubmitEvaluationResponse(BaseModel):
    success: bool = True
    feedback_id: Optional[int] = None
    attempt_id: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[str] = None


# --- Feedback ---------------------------------------------------------------


class FeedbackOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attempt_id: int
    user_id: int
    stage_id: int
    score: int
    total_questions: int
    correct_answers: int
    strengths: List[str]
    improvements: List[str]
    next_steps: str
    detailed_feedback: str
    badge: Optional[str] = None
    created_at: Optional[datetime] = None


class FeedbackEnvelope(BaseModel):
    success: bool = True
    data: FeedbackOut


class FeedbackListResponse(BaseModel):
    feedbacks: List[FeedbackOut]


# --- Users ------------------------------------------------------------------


class UserOut(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    role: str
    global_score: int
    current_stage_id: Optional[int] = None
    completed_stages: List[int]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProgressListResponse(BaseModel):
    progress: List[StageProgressOut]


# --- Analytics --------------------------------------------------------------


class AttemptSummary(BaseModel):
    id: int
    stage_id: int
    stage_display_order: int
    stage_title: str
    score: int
    time_spent: int
    completed_at: Optional[datetime] = None
    is_completed: bool


class StageMetrics(BaseModel):
    stage_id: int
    stage_title: str
    total_attempts: int
    average_score: float
    best_score: int
    total_time_spent: int
    completion_rate: float
    last_attempt_date: Optional[datetime] = None


class OverallMetrics(BaseModel):
    total_attempts: int
    average_score: float
    total_time_spent: int
    completed_stages: int
    total_stages: int
    improvement_rate: float


class CoachingSummary(BaseModel):
    general: str
    stage_specific: Dict[int, str]


class AnalyticsResponse(BaseModel):
    attempts: List[AttemptSummary]
    stage_metrics: List[StageMetrics]
    overall_metrics: OverallMetrics
    summary: CoachingSummary


# --- AI payloads ------------------------------------------------------------


class OpenGradePayload(BaseModel):
    isCorrect: bool
    explanation: str


class FeedbackPayload(BaseModel):
    strengths: List[str]
    improvements: List[str]
    nextSteps: str
    detailedFeedback: str
    badge: str


class GeneratedQuestion(BaseModel):
    type: str
    questionText: str
    options: Optional[List[str]] = None
    correctAnswer: Optional[str] = None
    points: int = 1
    category: Optional[str] = None
    difficulty: Optional[str] = None


class GeneratedQuestionSet(BaseModel):
    questions: List[GeneratedQuestion]


class StageDetailsPayload(BaseModel):
    topicsCovered: List[str]
    whatToExpect: str
    tipsForSuccess: List[str]
    evaluationDescription: str
