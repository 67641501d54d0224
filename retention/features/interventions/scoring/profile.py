"""
Member profile assembly.

Runs the churn, commitment and lifecycle models over one member's activity
and turns the result into the RiskSnapshot row the orchestrator reads.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from retention.features.interventions.domain import RiskSnapshot

from .churn_risk import ChurnRiskInput, ChurnRiskResult, calculate_churn_risk
from .commitment import CommitmentInput, CommitmentScoreResult, calculate_commitment_score_as_of
from .lifecycle import MemberStage, StageInputs, classify_stage, retention_play_for_stage


@dataclass(slots=True)
class MemberActivity:
    """Canonical per-member activity shape produced by data ingestion."""

    member_id: str
    tenant_id: str
    joined_date: date
    visit_dates: Sequence[date] = field(default_factory=list)
    status: str = "active"
    distance_km: float | None = None
    age: int | None = None
    employment_status: str | None = None
    student_status: str | None = None
    has_received_campaign: bool = False
    expected_visits_per_week: float | None = None


@dataclass(slots=True)
class MemberProfile:
    member_id: str
    tenant_id: str
    as_of: date
    churn: ChurnRiskResult
    commitment: CommitmentScoreResult
    stage: MemberStage
    retention_play: str


def build_member_profile(activity: MemberActivity, as_of: date | None = None) -> MemberProfile:
    as_of = as_of or datetime.now(UTC).date()

    commitment = calculate_commitment_score_as_of(
        CommitmentInput(
            joined_date=activity.joined_date,
            visit_dates=activity.visit_dates,
            expected_visits_per_week=activity.expected_visits_per_week,
        ),
        as_of,
    )

    churn = calculate_churn_risk(
        ChurnRiskInput(
            days_since_last_visit=commitment.days_since_last_visit,
            days_since_joined=commitment.days_since_joined,
            visits_last_30_days=commitment.visits_last_30_days,
            distance_km=activity.distance_km,
            age=activity.age,
            employment_status=activity.employment_status,
            student_status=activity.student_status,
            has_received_campaign=activity.has_received_campaign,
        )
    )

    stage = classify_stage(
        StageInputs(
            status=activity.status,
            churn_risk_score=churn.score,
            commitment_score=commitment.score,
            habit_decay_velocity=commitment.habit_decay_velocity,
            days_since_joined=commitment.days_since_joined,
            days_since_last_visit=commitment.days_since_last_visit,
            visits_last_30_days=commitment.visits_last_30_days,
            has_visit_history=commitment.total_visits > 0,
            risk_flags=commitment.risk_flags,
        )
    )

    return MemberProfile(
        member_id=activity.member_id,
        tenant_id=activity.tenant_id,
        as_of=as_of,
        churn=churn,
        commitment=commitment,
        stage=stage,
        retention_play=retention_play_for_stage(stage),
    )


def snapshot_from_profile(profile: MemberProfile, computed_at: datetime | None = None) -> RiskSnapshot:
    return RiskSnapshot(
        id=str(uuid.uuid4()),
        tenant_id=profile.tenant_id,
        member_id=profile.member_id,
        risk_score=profile.churn.score,
        primary_risk_reason=profile.churn.primary_reason,
        days_since_last_visit=profile.commitment.days_since_last_visit,
        computed_at=computed_at or datetime.now(UTC),
    )
