from types import SimpleNamespace

from qaquest.unlock import completion_map, is_stage_unlocked, unlock_states


def _stage(id, order):
    return SimpleNamespace(id=id, display_order=order)


def _progress(stage_id, done):
    return SimpleNamespace(stage_id=stage_id, is_completed=done)


def test_first_stage_always_unlocked():
    stages = [_stage(1, 1), _stage(2, 2), _stage(3, 3)]
    assert is_stage_unlocked(stages[0], stages, {}) is True


def test_lowest_active_order_is_unlocked_even_when_not_one():
    stages = [_stage(7, 4), _stage(8, 5)]
    assert is_stage_unlocked(stages[0], stages, {}) is True
    assert is_stage_unlocked(stages[1], stages, {}) is False


def test_next_stage_unlocks_only_after_predecessor_completed():
    stages = [_stage(1, 1), _stage(2, 2), _stage(3, 3)]
    states = unlock_states(stages, [_progress(1, True), _progress(2, False)])
    assert states == {1: True, 2: True, 3: False}


def test_incomplete_progress_row_does_not_unlock():
    stages = [_stage(1, 1), _stage(2, 2)]
    completed = completion_map([_progress(1, False)])
    assert is_stage_unlocked(stages[1], stages, completed) is False


def test_gap_in_ordering_unlocks_by_default(caplog):
    stages = [_stage(1, 1), _stage(5, 3)]
    with caplog.at_level("WARNING"):
        assert is_stage_unlocked(stages[1], stages, {}) is True
    assert "unlock_gap" in caplog.text


def test_completing_later_stage_does_not_unlock_unrelated_stage():
    stages = [_stage(1, 1), _stage(2, 2), _stage(3, 3)]
    states = unlock_states(stages, [_progress(3, True)])
    assert states[2] is False
