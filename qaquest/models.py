from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="user")  # 'user' | 'admin'
    global_score = Column(Integer, nullable=False, default=0)
    current_stage_id = Column(Integer, ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=True)

    progress = relationship("UserStage", back_populates="user")


class Stage(Base):
    __tablename__ = "stages"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    difficulty = Column(String, nullable=False)  # 'beginner' | 'intermediate' | 'advanced'
    icon = Column(String, nullable=True)
    color = Column(String, nullable=True)
    estimated_time = Column(String, nullable=True)
    question_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    display_order = Column(Integer, nullable=False, index=True)
    considerations = Column(Text, nullable=True)
    # AI-generated presentation details
    topics_covered = Column(JSON, nullable=True)
    what_to_expect = Column(Text, nullable=True)
    tips_for_success = Column(JSON, nullable=True)
    evaluation_description = Column(Text, nullable=True)
    # Target question mix
    total_questions = Column(Integer, nullable=False, default=10)
    open_questions = Column(Integer, nullable=False, default=5)
    closed_questions = Column(Integer, nullable=False, default=5)

    questions = relationship("Question", back_populates="stage")


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    stage_id = Column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(String, nullable=False)  # 'open-text' | 'multiple-choice'
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)
    correct_answer = Column(String, nullable=True)
    points = Column(Integer, nullable=False, default=1)
    category = Column(String, nullable=True)
    difficulty = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    stage = relationship("Stage", back_populates="questions")


class UserStage(Base):
    """Per-user, per-stage progress: best score and completion."""

    __tablename__ = "user_stages"
    __table_args__ = (UniqueConstraint("user_id", "stage_id", name="uq_user_stage"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    stage_id = Column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), index=True, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    score = Column(Integer, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="progress")
    stage = relationship("Stage")


class EvaluationAttempt(Base):
    __tablename__ = "evaluation_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    stage_id = Column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), index=True, nullable=False)
    attempt_id = Column(String, unique=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    score = Column(Integer, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    stage = relationship("Stage")
    responses = relationship("UserResponse", back_populates="attempt")


class UserResponse(Base):
    __tablename__ = "user_responses"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer, ForeignKey("evaluation_attempts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    response = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    attempt = relationship("EvaluationAttempt", back_populates="responses")
    question = relationship("Question")


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer, ForeignKey("evaluation_attempts.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    stage_id = Column(Integer, ForeignKey("stages.id", ondelete="CASCADE"), nullable=False)
    score = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    correct_answers = Column(Integer, nullable=False)
    strengths = Column(JSON, nullable=False)
    improvements = Column(JSON, nullable=False)
    next_steps = Column(Text, nullable=False)
    detailed_feedback = Column(Text, nullable=False)
    badge = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=True)

    attempt = relationship("EvaluationAttempt")
    stage = relationship("Stage")
