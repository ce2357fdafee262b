import pytest

from qaquest.errors import Conflict, InvalidRequest, NotFound
from qaquest.models import UserStage
from qaquest.schemas import StageCreate, StageDetailsPayload, StageUpdate
from qaquest.stages import (
    create_stage,
    first_active_stage_id,
    generate_stage_details,
    stage_progress,
    stages_with_progress,
    unlock_debug,
    update_stage,
)

from .conftest import FakeAIClient


def _create(**overrides):
    data = dict(
        title="Automation",
        description="Selenium and friends",
        difficulty="advanced",
        icon="robot",
        color="#ff0000",
        estimated_time="30 min",
        display_order=4,
    )
    data.update(overrides)
    return StageCreate(**data)


def test_create_stage_rejects_unknown_difficulty(db):
    with pytest.raises(InvalidRequest):
        create_stage(db, _create(difficulty="expert"))


def test_create_stage_rejects_duplicate_title(db, make_stage):
    make_stage(1, title="Automation")
    with pytest.raises(Conflict):
        create_stage(db, _create())


def test_inactive_stage_may_reuse_display_order(db, make_stage):
    make_stage(4)
    stage = create_stage(db, _create(is_active=False))
    assert stage.display_order == 4 and stage.is_active is False


def test_activating_stage_checks_order(db, make_stage):
    make_stage(4)
    hidden = create_stage(db, _create(is_active=False))
    with pytest.raises(Conflict):
        update_stage(db, hidden.id, StageUpdate(is_active=True))


def test_update_ignores_explicit_nulls(db, make_stage):
    stage = make_stage(2)
    updated = update_stage(db, stage.id, StageUpdate(display_order=None, description="New text"))
    assert updated.display_order == 2
    assert updated.description == "New text"


def test_update_missing_stage_is_not_found(db):
    with pytest.raises(NotFound):
        update_stage(db, 404, StageUpdate(title="x"))


def test_stage_details_are_optional(db):
    details = StageDetailsPayload(
        topicsCovered=["Page objects"],
        whatToExpect="Code reading",
        tipsForSuccess=["Know your locators"],
        evaluationDescription="Mixed questions",
    )
    stage = create_stage(db, _create(), details)
    assert stage.topics_covered == ["Page objects"]
    assert stage.evaluation_description == "Mixed questions"


def test_generate_stage_details_swallows_provider_failure(caplog):
    with caplog.at_level("WARNING"):
        assert generate_stage_details(FakeAIClient(["nope"]), _create(), timeout=1) is None
    assert "stage_details_skipped" in caplog.text
    assert generate_stage_details(None, _create(), timeout=1) is None


def test_progress_defaults_when_untouched(db, make_user, make_stage):
    user = make_user()
    stage = make_stage(1)
    progress = stage_progress(db, stage.id, user.id)
    assert progress.is_completed is False and progress.score is None


def test_unlock_views_follow_completion(db, make_user, make_stage):
    user = make_user()
    s1 = make_stage(1)
    s2 = make_stage(2)
    make_stage(3)
    db.add(UserStage(user_id=user.id, stage_id=s1.id, is_completed=True, score=80))
    db.commit()

    listed = stages_with_progress(db, user.id)
    assert [s.is_unlocked for s in listed] == [True, True, False]
    assert listed[0].user_score == 80

    debug = unlock_debug(db, user.id)
    assert debug.total_stages == 3
    assert debug.completed_stages == [s1.id]
    assert [s.is_unlocked for s in debug.stages] == [True, True, False]
    assert debug.stages[1].id == s2.id


def test_first_active_stage_follows_display_order(db, make_stage):
    assert first_active_stage_id(db) is None
    make_stage(1, is_active=False)
    make_stage(3)
    earliest = make_stage(2)
    assert earliest.id != 1
    assert first_active_stage_id(db) == earliest.id
