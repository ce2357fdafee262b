import json
import os
from threading import Lock

# must be set before qaquest.db builds its module-level engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from jose import jwt
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from qaquest.ai_client import AIClient
from qaquest.cache import TTLCache
from qaquest.config import Settings
from qaquest.db import Base, make_engine
from qaquest.models import Question, Stage, User

SECRET = "test-secret"


class FakeAIClient(AIClient):
    """Scripted provider.

    ``script`` is either a list of replies consumed in order or a callable
    ``messages -> reply``. A reply that is an exception instance is raised.
    """

    name = "fake"

    def __init__(self, script=None):
        self.script = script if script is not None else []
        self.calls = []
        self._lock = Lock()

    def complete(self, messages, *, timeout):
        with self._lock:
            self.calls.append(messages)
            if not callable(self.script):
                reply = self.script.pop(0)
        if callable(self.script):
            reply = self.script(messages)
        if isinstance(reply, Exception):
            raise reply
        return reply


def is_grading_call(messages) -> bool:
    return "grading a short open answer" in messages[0]["content"]


def feedback_json(**overrides) -> str:
    data = {
        "strengths": ["Solid grasp of test levels"],
        "improvements": ["Practise boundary value analysis"],
        "nextSteps": "Review equivalence partitioning.",
        "detailedFeedback": "Good work overall.",
        "badge": "QA Master",
    }
    data.update(overrides)
    return json.dumps(data)


def grade_json(correct: bool) -> str:
    return json.dumps({"isCorrect": correct, "explanation": "ok"})


def make_token(user_id, secret: str = SECRET) -> str:
    return jwt.encode({"userId": user_id}, secret, algorithm="HS256")


def auth_headers(user_id) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", jwt_secret=SECRET, grading_workers=2)


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest.fixture
def make_user(db):
    def _make(email="player@example.com", role="user", **kw):
        user = User(email=email, first_name="Ada", last_name="Tester", role=role, **kw)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_stage(db):
    def _make(display_order, title=None, is_active=True, **kw):
        stage = Stage(
            title=title or f"Stage {display_order}",
            description="QA fundamentals",
            difficulty="beginner",
            icon="bug",
            color="#123456",
            estimated_time="15 min",
            display_order=display_order,
            is_active=is_active,
            **kw,
        )
        db.add(stage)
        db.commit()
        return stage

    return _make


@pytest.fixture
def make_question(db):
    def _make(stage, kind="multiple-choice", options=None, correct_answer=None, points=1, text=None):
        if kind == "multiple-choice" and options is None:
            options = ["Unit", "Integration", "System", "Acceptance"]
            correct_answer = correct_answer or "Integration"
        q = Question(
            stage_id=stage.id,
            type=kind,
            question_text=text or "Which test level checks module interfaces?",
            options=options,
            correct_answer=correct_answer,
            points=points,
            category="Testing levels",
            difficulty="beginner",
        )
        db.add(q)
        db.commit()
        return q

    return _make


@pytest.fixture
def api(session_factory, settings, fake_ai):
    from fastapi.testclient import TestClient

    from qaquest.config import current_settings
    from qaquest.db import get_db
    from qaquest.main import app, get_ai_client, get_analytics_cache

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    cache = TTLCache(ttl_seconds=300, max_entries=32)
    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[current_settings] = lambda: settings
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    app.dependency_overrides[get_analytics_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
