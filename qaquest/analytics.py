from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from .cache import AnalyticsKey, TTLCache
from .errors import InvalidRequest
from .models import EvaluationAttempt, Stage
from .schemas import (
    AnalyticsResponse,
    AttemptSummary,
    CoachingSummary,
    OverallMetrics,
    StageMetrics,
)

TIME_FILTERS = ("all", "today", "week", "month", "year")
# an attempt at or above this counts the stage as passed for analytics
ANALYTICS_PASS_SCORE = 70


def _cutoff(time_filter: str, now: datetime) -> Optional[datetime]:
    if time_filter == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if time_filter == "week":
        return now - timedelta(days=7)
    if time_filter == "month":
        return now - timedelta(days=30)
    if time_filter == "year":
        return now - timedelta(days=365)
    return None


def _attempt_time(a: EvaluationAttempt) -> datetime:
    return a.created_at or a.end_time or a.start_time


def improvement_rate(scores_oldest_first: List[int]) -> float:
    """Relative change (%) of the mean score from the older half to the newer half."""
    if len(scores_oldest_first) < 2:
        return 0.0
    mid = len(scores_oldest_first) // 2
    first, second = scores_oldest_first[:mid], scores_oldest_first[mid:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    return ((second_avg - first_avg) / first_avg) * 100 if first_avg > 0 else 0.0


def _stage_metrics(attempts: List[EvaluationAttempt]) -> List[StageMetrics]:
    grouped: Dict[int, List[EvaluationAttempt]] = {}
    for a in attempts:
        grouped.setdefault(a.stage_id, []).append(a)
    out: List[StageMetrics] = []
    for stage_id, rows in grouped.items():
        scores = [a.score for a in rows if a.score is not None]
        completed = sum(1 for a in rows if a.is_completed)
        out.append(
            StageMetrics(
                stage_id=stage_id,
                stage_title=rows[0].stage.title if rows[0].stage else "",
                total_attempts=len(rows),
                average_score=sum(scores) / len(scores) if scores else 0.0,
                best_score=max(scores) if scores else 0,
                total_time_spent=sum(a.time_spent_seconds or 0 for a in rows),
                completion_rate=(completed / len(rows)) * 100,
                last_attempt_date=max(_attempt_time(a) for a in rows),
            )
        )
    return out


def _tone(average: float) -> str:
    if average >= 80:
        return "**Excellent performance!**"
    if average >= 60:
        return "**Good progress**"
    return "**More practice needed**"


def _recommendations(average: float) -> List[str]:
    if average >= 80:
        return ["Explore related advanced topics", "Share your knowledge with others", "Keep practising regularly"]
    if average >= 60:
        return ["Review your lowest-scoring topics", "Practise specific areas", "Consider extra evaluations"]
    return ["Review the material from the start", "Practise with basic exercises", "Look for help or extra resources"]


def build_summary(
    overall: OverallMetrics, stage_metrics: List[StageMetrics], attempts: List[EvaluationAttempt]
) -> CoachingSummary:
    lines = [
        "## Overall progress",
        "",
        f"{_tone(overall.average_score)} Average score: **{overall.average_score:.1f}%**.",
        "",
        "### Statistics",
        f"- **Attempts:** {overall.total_attempts}",
        f"- **Time invested:** {overall.total_time_spent // 60} minutes",
        f"- **Stages passed:** {overall.completed_stages}/{overall.total_stages}",
    ]
    if overall.improvement_rate > 0:
        lines.append(f"- **Improvement:** +{overall.improvement_rate:.1f}%")
    lines += ["", "### Recommendations"] + [f"- {r}" for r in _recommendations(overall.average_score)]

    per_stage: Dict[int, str] = {}
    for m in stage_metrics:
        body = [
            f"## {m.stage_title}",
            "",
            _tone(m.average_score),
            f"Average score: **{m.average_score:.1f}%**",
            f"Best score: **{m.best_score}%**",
            f"Completion rate: **{m.completion_rate:.1f}%**",
        ]
        recent = [a for a in attempts if a.stage_id == m.stage_id][:3]
        if recent:
            body += ["", "### Recent attempts"]
            for idx, a in enumerate(recent, start=1):
                body.append(f"- **Attempt {idx}** ({_attempt_time(a):%Y-%m-%d}): {a.score or 0}%")
        per_stage[m.stage_id] = "\n".join(body)
    return CoachingSummary(general="\n".join(lines), stage_specific=per_stage)


def skills_analytics(
    db: Session,
    user_id: int,
    time_filter: str = "all",
    stage_id: Optional[int] = None,
    cache: Optional[TTLCache] = None,
    now: Optional[datetime] = None,
) -> AnalyticsResponse:
    if time_filter not in TIME_FILTERS:
        raise InvalidRequest("time_filter must be one of: " + ", ".join(TIME_FILTERS))
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)

    q = (
        db.query(EvaluationAttempt)
        .options(joinedload(EvaluationAttempt.stage))
        .filter(EvaluationAttempt.user_id == user_id)
    )
    if stage_id is not None:
        q = q.filter(EvaluationAttempt.stage_id == stage_id)
    attempts = q.order_by(EvaluationAttempt.created_at.desc(), EvaluationAttempt.id.desc()).all()
    cutoff = _cutoff(time_filter, now)
    if cutoff is not None:
        attempts = [a for a in attempts if _attempt_time(a) >= cutoff]

    stage_metrics = _stage_metrics(attempts)
    scored = [a.score for a in attempts if a.score is not None]
    total_stages = db.query(Stage.id).filter(Stage.is_active.is_(True)).count()
    overall = OverallMetrics(
        total_attempts=len(attempts),
        average_score=(sum(scored) / len(scored)) if scored else 0.0,
        total_time_spent=sum(a.time_spent_seconds or 0 for a in attempts),
        completed_stages=len({a.stage_id for a in attempts if a.is_completed and (a.score or 0) >= ANALYTICS_PASS_SCORE}),
        total_stages=total_stages,
        improvement_rate=improvement_rate([a.score or 0 for a in reversed(attempts)]),
    )

    def _compute() -> CoachingSummary:
        return build_summary(overall, stage_metrics, attempts)

    if cache is not None:
        window_day = now.date() if cutoff is not None else None
        key = AnalyticsKey(user_id, time_filter, stage_id, window_day)
        summary = cache.get_or_compute(key, _compute)
    else:
        summary = _compute()

    return AnalyticsResponse(
        attempts=[
            AttemptSummary(
                id=a.id,
                stage_id=a.stage_id,
                stage_display_order=a.stage.display_order if a.stage else 0,
                stage_title=a.stage.title if a.stage else "",
                score=a.score or 0,
                time_spent=a.time_spent_seconds or 0,
                completed_at=_attempt_time(a),
                is_completed=bool(a.is_completed),
            )
            for a in attempts
        ],
        stage_metrics=stage_metrics,
        overall_metrics=overall,
        summary=summary,
    )
