"""Score aggregators for the four leaderboard categories.

Every aggregator is a pure function of a ``UserScoreInput``: no I/O, no clock
reads except through the ``now`` argument. Returning ``None`` means the user
is excluded from the leaderboard, which is different from scoring zero.
"""
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Dict, Iterable, List, Optional

from fitboard.models import (
    Category,
    DateRange,
    ScoreResult,
    UserScoreInput,
    WorkoutRecord,
)

BODYWEIGHT = "Bodyweight"
ACTIVE_DAY_POINTS = 10

# (minimum distinct weigh-in days this week, bonus), checked top-down
CONSISTENCY_BONUS_STEPS = (
    (5, 0.5),
    (3, 0.25),
    (1, 0.1),
)


def local_day(value: datetime, tz: tzinfo) -> date:
    # Naive timestamps are treated as already being in leaderboard time.
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value.astimezone(tz).date()


def week_start(now: datetime, tz: tzinfo) -> datetime:
    """Sunday 00:00 of the week containing ``now``, in ``tz``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    local = now.astimezone(tz)
    # Python weekday(): Monday=0 ... Sunday=6
    days_since_sunday = (local.weekday() + 1) % 7
    start = (local - timedelta(days=days_since_sunday)).date()
    return datetime(start.year, start.month, start.day, tzinfo=tz)


def consistency_bonus(days_this_week: int) -> float:
    for min_days, bonus in CONSISTENCY_BONUS_STEPS:
        if days_this_week >= min_days:
            return bonus
    return 0.0


def filter_workouts(
    workouts: Iterable[WorkoutRecord],
    date_range: Optional[DateRange],
    tz: tzinfo = timezone.utc,
) -> List[WorkoutRecord]:
    if date_range is None:
        return list(workouts)
    return [w for w in workouts if date_range.contains(local_day(w.completed_date, tz))]


def active_days(workouts: Iterable[WorkoutRecord], tz: tzinfo) -> int:
    return len({local_day(w.completed_date, tz) for w in workouts})


def weight_loss_score(
    data: UserScoreInput,
    date_range: Optional[DateRange] = None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Optional[ScoreResult]:
    # Always computed over the full history; date_range is ignored on purpose.
    samples = sorted(data.weight_samples, key=lambda s: _sort_key(s.date, tz))
    if not samples:
        return None

    starting_weight = data.initial_weight or samples[0].weight
    current_weight = samples[-1].weight

    start_of_week = week_start(now, tz)
    weigh_in_days = len({
        local_day(s.date, tz)
        for s in samples
        if _sort_key(s.date, tz) >= start_of_week
    })
    bonus = consistency_bonus(weigh_in_days)

    weight_loss = starting_weight - current_weight
    return ScoreResult(
        user_id=data.user_id,
        category=Category.WEIGHT_LOSS,
        score=weight_loss * (1 + bonus),
        metrics={
            "starting_weight": starting_weight,
            "current_weight": current_weight,
            "weight_loss": weight_loss,
            "consistency_bonus": bonus,
            "weigh_in_days": weigh_in_days,
        },
    )


def strength_score(
    data: UserScoreInput,
    date_range: Optional[DateRange] = None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Optional[ScoreResult]:
    workouts = filter_workouts(data.workouts, date_range, tz)
    if not workouts:
        return None

    total = 0.0
    for workout in workouts:
        if workout.category == BODYWEIGHT:
            weight = data.bodyweight or 0
        else:
            weight = workout.weight_lifted
        total += weight * workout.sets_completed * workout.reps_completed

    return ScoreResult(
        user_id=data.user_id,
        category=Category.STRENGTH,
        score=total,
        metrics={
            "workout_count": len(workouts),
            "total_volume": round(total, 2),
        },
    )


def consistency_score(
    data: UserScoreInput,
    date_range: Optional[DateRange] = None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Optional[ScoreResult]:
    workouts = filter_workouts(data.workouts, date_range, tz)
    if not workouts:
        return None

    days = active_days(workouts, tz)
    return ScoreResult(
        user_id=data.user_id,
        category=Category.CONSISTENCY,
        score=len(workouts) + days * ACTIVE_DAY_POINTS,
        metrics={
            "total_workouts": len(workouts),
            "active_days": days,
        },
    )


def hybrid_score(
    data: UserScoreInput,
    date_range: Optional[DateRange] = None,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Optional[ScoreResult]:
    workouts = filter_workouts(data.workouts, date_range, tz)
    if not workouts:
        return None

    # No bodyweight substitution here, unlike strength.
    total_volume = sum(w.weight_lifted * w.reps_completed * w.sets_completed for w in workouts)
    days = active_days(workouts, tz)
    return ScoreResult(
        user_id=data.user_id,
        category=Category.HYBRID,
        score=total_volume + days * ACTIVE_DAY_POINTS,
        metrics={
            "total_volume": total_volume,
            "active_days": days,
            "total_workouts": len(workouts),
        },
    )


AGGREGATORS: Dict[Category, Callable[..., Optional[ScoreResult]]] = {
    Category.WEIGHT_LOSS: weight_loss_score,
    Category.STRENGTH: strength_score,
    Category.CONSISTENCY: consistency_score,
    Category.HYBRID: hybrid_score,
}


def compute_score(
    category,
    data: UserScoreInput,
    date_range: Optional[DateRange] = None,
    *,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> Optional[ScoreResult]:
    category = Category.parse(category)
    if now is None:
        now = datetime.now(tz)
    return AGGREGATORS[category](data, date_range, now=now, tz=tz)


def _sort_key(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value
