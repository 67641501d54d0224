"""
Commitment score engine.

Rule-based 0-100 score built from three additive components:

* recency (max 40) - how recently the member last visited
* consistency (max 40) - trailing 30-day visits versus expected visits
* tenure bonus (max 20) - long-standing members who still show up

Everything is computed "as of" an explicit date using only the visits on or
before that date, which is what makes the habit-decay velocity (score now
versus score 30 days ago) and the trend timeline possible.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, fields
from datetime import date, timedelta
from statistics import pvariance

CONSISTENCY_MAX = 40.0

CONSISTENCY_RATIO_CAP = 1.5
DEFAULT_EXPECTED_VISITS_PER_WEEK = 2.0
VELOCITY_WINDOW_DAYS = 30

# (max days since last visit, recency points)
RECENCY_STEPS: tuple[tuple[int, float], ...] = (
    (3, 40.0),
    (7, 32.0),
    (14, 22.0),
    (21, 12.0),
    (30, 5.0),
)

# (min tenure days, min visits in trailing 30 days, bonus)
TENURE_STEPS: tuple[tuple[int, int, float], ...] = (
    (180, 4, 20.0),
    (90, 3, 15.0),
    (30, 2, 8.0),
)

# (min gap in days between the two most recent visits, decline velocity)
DECLINE_STEPS: tuple[tuple[int, int], ...] = (
    (21, 80),
    (14, 55),
    (7, 30),
)

RAPID_DECLINE_VELOCITY = 55
GAP_VARIANCE_LIMIT = 50.0


@dataclass(slots=True)
class CommitmentInput:
    joined_date: date
    visit_dates: Sequence[date]
    expected_visits_per_week: float | None = None


@dataclass(slots=True)
class RiskFlags:
    no_recent_visits: bool = False
    large_gap: bool = False
    new_member_low_attendance: bool = False
    rapid_decline: bool = False
    declining_frequency: bool = False
    inconsistent_pattern: bool = False

    def active(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]


@dataclass(slots=True)
class CommitmentScoreResult:
    as_of: date
    score: int
    recency: float
    consistency: float
    tenure_bonus: float
    consistency_ratio: float
    attendance_decay: int
    decline_velocity: int
    habit_decay_velocity: float
    days_since_joined: int
    days_since_last_visit: int | None
    visits_last_30_days: int
    total_visits: int
    risk_flags: RiskFlags


def _visits_between(visits: Sequence[date], start: date, end: date) -> int:
    """Visits with start <= visit <= end."""
    return sum(1 for v in visits if start <= v <= end)


def recency_points(days_since_last_visit: int | None) -> float:
    if days_since_last_visit is None:
        return 0.0
    for max_days, points in RECENCY_STEPS:
        if days_since_last_visit <= max_days:
            return points
    return 0.0


def tenure_bonus(days_since_joined: int, visits_last_30_days: int) -> float:
    for min_tenure, min_visits, bonus in TENURE_STEPS:
        if days_since_joined >= min_tenure and visits_last_30_days >= min_visits:
            return bonus
    return 0.0


def decline_velocity(latest_gap_days: int | None) -> int:
    if latest_gap_days is None:
        return 0
    for min_gap, velocity in DECLINE_STEPS:
        if latest_gap_days >= min_gap:
            return velocity
    return 0


def _score_as_of(data: CommitmentInput, as_of: date) -> CommitmentScoreResult:
    visits = sorted((v for v in data.visit_dates if v <= as_of), reverse=True)
    days_since_joined = max(0, (as_of - data.joined_date).days)
    days_since_last_visit = (as_of - visits[0]).days if visits else None

    window_start = as_of - timedelta(days=30)
    visits_30 = _visits_between(visits, window_start, as_of)
    visits_14 = _visits_between(visits, as_of - timedelta(days=14), as_of)
    previous_30 = sum(
        1 for v in visits if as_of - timedelta(days=60) <= v < window_start
    )

    expected_per_week = data.expected_visits_per_week or DEFAULT_EXPECTED_VISITS_PER_WEEK
    expected_30 = expected_per_week / 7 * 30
    ratio = visits_30 / expected_30 if expected_30 > 0 else 0.0

    recency = recency_points(days_since_last_visit)
    consistency = min(ratio, CONSISTENCY_RATIO_CAP) / CONSISTENCY_RATIO_CAP * CONSISTENCY_MAX
    bonus = tenure_bonus(days_since_joined, visits_30)

    gaps = [(later - earlier).days for later, earlier in zip(visits, visits[1:])]
    latest_gap = gaps[0] if gaps else None
    velocity = decline_velocity(latest_gap)

    flags = RiskFlags(
        no_recent_visits=(
            (days_since_last_visit is not None and days_since_last_visit > 14) or visits_14 == 0
        ),
        large_gap=latest_gap is not None and latest_gap >= 14,
        new_member_low_attendance=days_since_joined <= 30 and len(visits) < 2,
        rapid_decline=velocity >= RAPID_DECLINE_VELOCITY,
        declining_frequency=(
            (previous_30 > 0 and visits_30 < previous_30 * 0.5)
            or (velocity >= 30 and ratio < 0.5)
        ),
        inconsistent_pattern=len(gaps) > 1 and pvariance(gaps) > GAP_VARIANCE_LIMIT,
    )

    score = round(max(0.0, min(100.0, recency + consistency + bonus)))

    return CommitmentScoreResult(
        as_of=as_of,
        score=score,
        recency=recency,
        consistency=round(consistency, 2),
        tenure_bonus=bonus,
        consistency_ratio=round(ratio, 3),
        attendance_decay=round(100 - min(ratio, 1.0) * 100),
        decline_velocity=velocity,
        habit_decay_velocity=0.0,
        days_since_joined=days_since_joined,
        days_since_last_visit=days_since_last_visit,
        visits_last_30_days=visits_30,
        total_visits=len(visits),
        risk_flags=flags,
    )


def calculate_commitment_score_as_of(data: CommitmentInput, as_of: date) -> CommitmentScoreResult:
    """
    Recompute the commitment score at a past (or present) date.

    Only visits on or before ``as_of`` are considered, so the result is what
    the engine would have reported on that day. Used for habit-decay velocity
    and the trend timeline.
    """
    current = _score_as_of(data, as_of)
    past = _score_as_of(data, as_of - timedelta(days=VELOCITY_WINDOW_DAYS))
    current.habit_decay_velocity = round((current.score - past.score) / VELOCITY_WINDOW_DAYS, 2)
    return current


def calculate_commitment_score(
    data: CommitmentInput, today: date | None = None
) -> CommitmentScoreResult:
    return calculate_commitment_score_as_of(data, today or date.today())


def commitment_timeline(
    data: CommitmentInput, end: date, days: int = 90, step_days: int = 7
) -> list[tuple[date, int]]:
    """(date, score) points from ``end - days`` to ``end`` inclusive."""
    points = []
    offset = days
    while offset >= 0:
        as_of = end - timedelta(days=offset)
        points.append((as_of, _score_as_of(data, as_of).score))
        offset -= step_days
    if points[-1][0] != end:
        points.append((end, _score_as_of(data, end).score))
    return points
