"""Sequential stage gating.

A stage is playable when the stage right before it (display order minus one)
has been completed. The first active stage is always open, and a stage whose
predecessor is missing from the catalog is open as well so that a gap in the
ordering never strands a player.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional, Sequence

_log = logging.getLogger(__name__)


def completion_map(progress_rows: Iterable) -> Dict[int, bool]:
    """stage_id -> is_completed from UserStage-like rows."""
    return {row.stage_id: bool(row.is_completed) for row in progress_rows}


def is_stage_unlocked(stage, stages: Sequence, completed: Mapping[int, bool]) -> bool:
    if not stages:
        return True
    lowest = min(s.display_order for s in stages)
    if stage.display_order == lowest:
        return True

    previous = _find_by_order(stages, stage.display_order - 1)
    if previous is None:
        _log.warning(
            "unlock_gap stage_id=%s display_order=%s unlocked_by_default",
            stage.id,
            stage.display_order,
        )
        return True
    return bool(completed.get(previous.id, False))


def unlock_states(stages: Sequence, progress_rows: Iterable) -> Dict[int, bool]:
    """stage_id -> unlocked for every stage in the active catalog."""
    completed = completion_map(progress_rows)
    return {s.id: is_stage_unlocked(s, stages, completed) for s in stages}


def _find_by_order(stages: Sequence, display_order: int) -> Optional[object]:
    for s in stages:
        if s.display_order == display_order:
            return s
    return None
