"""
Churn risk model.

Weighted sum of six independently scaled sub-scores (attendance, visit
frequency, proximity, age, employment/student status, tenure interaction)
plus a small bump for members who already received a campaign and stayed
away. Every sub-score is on a 0-100 scale before weighting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from itertools import pairwise


class ChurnRiskLevel(StrEnum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


WEIGHTS: dict[str, float] = {
    "attendance": 0.40,
    "visit_frequency": 0.15,
    "proximity": 0.15,
    "age": 0.10,
    "employment": 0.08,
    "tenure": 0.07,
}

CAMPAIGN_NO_RESPONSE_BONUS = 1.5
INACTIVE_AFTER_DAYS = 7

# (days since last visit, attendance risk) anchors, interpolated linearly
ATTENDANCE_ANCHORS: tuple[tuple[int, float], ...] = (
    (0, 0.0),
    (7, 20.0),
    (14, 40.0),
    (21, 55.0),
    (30, 65.0),
    (50, 80.0),
    (60, 85.0),
)

LEVEL_THRESHOLDS: tuple[tuple[int, ChurnRiskLevel], ...] = (
    (70, ChurnRiskLevel.HIGH),
    (40, ChurnRiskLevel.MEDIUM),
    (15, ChurnRiskLevel.LOW),
)

PRIMARY_REASONS: dict[str, str] = {
    "attendance": "No visit in {days} days",
    "visit_frequency": "Low visit frequency",
    "proximity": "Lives far from the location",
    "age": "Age group with higher drop-off",
    "employment": "Schedule or employment instability",
    "tenure": "New member already inactive",
}


@dataclass(slots=True)
class ChurnRiskInput:
    days_since_last_visit: int | None
    days_since_joined: int
    visits_last_30_days: int | None = None
    distance_km: float | None = None
    age: int | None = None
    employment_status: str | None = None
    student_status: str | None = None
    has_received_campaign: bool = False


@dataclass(slots=True)
class ChurnRiskResult:
    level: ChurnRiskLevel
    score: int
    components: dict[str, float] = field(default_factory=dict)
    primary_reason: str | None = None


def attendance_risk(days_since_last_visit: int) -> float:
    if days_since_last_visit <= 0:
        return 0.0
    last_day, last_score = ATTENDANCE_ANCHORS[-1]
    if days_since_last_visit > last_day:
        return last_score + min(10.0, (days_since_last_visit - last_day) / 2)

    for (d0, s0), (d1, s1) in pairwise(ATTENDANCE_ANCHORS):
        if days_since_last_visit <= d1:
            return s0 + (s1 - s0) * (days_since_last_visit - d0) / (d1 - d0)
    return last_score


def visit_frequency_risk(visits_last_30_days: int | None) -> float:
    if visits_last_30_days is None:
        return 30.0
    if visits_last_30_days >= 8:
        return 0.0
    if visits_last_30_days >= 5:
        return 15.0
    if visits_last_30_days >= 3:
        return 30.0
    if visits_last_30_days >= 1:
        return 45.0
    return 60.0


def proximity_risk(distance_km: float | None) -> float:
    if distance_km is None:
        return 0.0
    if distance_km <= 2:
        return 0.0
    if distance_km <= 5:
        return 10.0
    if distance_km <= 10:
        return 25.0
    if distance_km <= 20:
        return 45.0
    if distance_km <= 30:
        return 65.0
    return 85.0


def age_risk(age: int | None) -> float:
    if age is None:
        return 15.0
    if age < 20:
        return 50.0
    if age <= 25:
        return 30.0
    if age <= 35:
        return 20.0
    if age < 50:
        return 10.0
    return 5.0


def _normalise(value: str | None) -> str:
    return (value or "").strip().lower().replace("-", "_").replace(" ", "_")


def employment_risk(employment_status: str | None, student_status: str | None) -> float:
    student = _normalise(student_status)
    employment = _normalise(employment_status)

    if student in {"student", "yes", "true", "full_time", "part_time"} or "student" in employment:
        return 40.0
    if employment in {"unemployed", "part_time"}:
        return 20.0
    if employment in {"full_time", "employed", "self_employed"}:
        return 5.0
    return 15.0


def tenure_risk(days_since_joined: int, days_since_last_visit: int) -> float:
    if days_since_joined < 30 and days_since_last_visit >= INACTIVE_AFTER_DAYS:
        return 50.0
    if days_since_joined >= 90:
        return 5.0
    return 20.0


def level_for_score(score: int) -> ChurnRiskLevel:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return ChurnRiskLevel.NONE


def calculate_churn_risk(data: ChurnRiskInput) -> ChurnRiskResult:
    """
    Score a member's churn risk on a 0-100 scale.

    Members who never visited or visited today are always ``none``/0; there
    is no attendance signal to act on yet.
    """
    days = data.days_since_last_visit
    if days is None or days <= 0:
        return ChurnRiskResult(level=ChurnRiskLevel.NONE, score=0)

    raw = {
        "attendance": attendance_risk(days),
        "visit_frequency": visit_frequency_risk(data.visits_last_30_days),
        "proximity": proximity_risk(data.distance_km),
        "age": age_risk(data.age),
        "employment": employment_risk(data.employment_status, data.student_status),
        "tenure": tenure_risk(data.days_since_joined, days),
    }
    weighted = {name: raw[name] * WEIGHTS[name] for name in WEIGHTS}

    total = sum(weighted.values())
    if data.has_received_campaign and days >= INACTIVE_AFTER_DAYS:
        total += CAMPAIGN_NO_RESPONSE_BONUS

    score = round(max(0.0, min(100.0, total)))
    dominant = max(weighted, key=weighted.get)

    return ChurnRiskResult(
        level=level_for_score(score),
        score=score,
        components={name: round(value, 2) for name, value in raw.items()},
        primary_reason=PRIMARY_REASONS[dominant].format(days=days),
    )
