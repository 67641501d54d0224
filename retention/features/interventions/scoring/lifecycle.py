"""
Habit lifecycle stage classifier.

Stages are mutually exclusive. ``STAGE_RULES`` is evaluated top to bottom and
the first matching predicate wins, so the priority order is the list order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .commitment import RiskFlags


class MemberStage(StrEnum):
    ONBOARDING_VULNERABILITY = "onboarding_vulnerability"
    HABIT_FORMATION = "habit_formation"
    MOMENTUM_IDENTITY = "momentum_identity"
    PLATEAU_BOREDOM_RISK = "plateau_boredom_risk"
    EMOTIONAL_DISENGAGEMENT = "emotional_disengagement"
    AT_RISK_SILENT_QUIT = "at_risk_silent_quit"
    WIN_BACK_WINDOW = "win_back_window"


STAGE_PLAYS: dict[MemberStage, str] = {
    MemberStage.ONBOARDING_VULNERABILITY: (
        "Nurture the first 30 days: check-in call, goal setting, celebrate the first win."
    ),
    MemberStage.HABIT_FORMATION: (
        "Lock in the routine: fixed class times, buddy invites, small rewards for consistency."
    ),
    MemberStage.MOMENTUM_IDENTITY: (
        "Reinforce identity: highlight streaks, member spotlights, community events."
    ),
    MemberStage.PLATEAU_BOREDOM_RISK: (
        "Reignite interest: a new goal, a challenge or a different class format."
    ),
    MemberStage.EMOTIONAL_DISENGAGEMENT: (
        "Reconnect personally: 1:1 touchpoint, ask what would make the gym feel essential again."
    ),
    MemberStage.AT_RISK_SILENT_QUIT: (
        "Prioritise outreach: personal message or call before they slip away."
    ),
    MemberStage.WIN_BACK_WINDOW: (
        "Win-back campaign: we-miss-you message with an incentive or free class."
    ),
}

INACTIVE_STATUSES = frozenset({"inactive", "cancelled", "canceled"})


@dataclass(slots=True)
class StageInputs:
    status: str
    churn_risk_score: int
    commitment_score: int
    habit_decay_velocity: float
    days_since_joined: int
    days_since_last_visit: int | None
    visits_last_30_days: int
    has_visit_history: bool
    risk_flags: RiskFlags

    @property
    def days_idle(self) -> int:
        """Days since last visit, treating "never" as zero for threshold checks."""
        return self.days_since_last_visit if self.days_since_last_visit is not None else 0


@dataclass(slots=True, frozen=True)
class StageRule:
    name: str
    predicate: Callable[[StageInputs], bool]
    stage: MemberStage


def _is_lapsed_status(m: StageInputs) -> bool:
    return m.status.strip().lower() in INACTIVE_STATUSES


def _no_history_yet(m: StageInputs) -> bool:
    return not m.has_visit_history and m.days_since_joined > 0


def _silent_quit(m: StageInputs) -> bool:
    flags = m.risk_flags
    return (
        m.churn_risk_score >= 60
        or m.days_idle >= 30
        or (flags.no_recent_visits and flags.large_gap)
        or (flags.rapid_decline and flags.declining_frequency)
    )


def _emotional_disengagement(m: StageInputs) -> bool:
    flags = m.risk_flags
    return (
        (flags.rapid_decline or flags.declining_frequency)
        and m.commitment_score < 45
        and m.days_idle >= 14
    )


def _plateau(m: StageInputs) -> bool:
    return (
        m.days_since_joined >= 90
        and (m.risk_flags.declining_frequency or m.habit_decay_velocity < -0.3)
        and 40 <= m.commitment_score < 65
    )


def _momentum(m: StageInputs) -> bool:
    return m.days_since_joined >= 60 and m.commitment_score >= 65 and m.visits_last_30_days >= 4


def _habit_forming(m: StageInputs) -> bool:
    return 14 <= m.days_since_joined < 90 and m.commitment_score >= 40


def _still_onboarding(m: StageInputs) -> bool:
    return m.days_since_joined < 30 or m.risk_flags.new_member_low_attendance


STAGE_RULES: tuple[StageRule, ...] = (
    StageRule("lapsed_status", _is_lapsed_status, MemberStage.WIN_BACK_WINDOW),
    StageRule("no_history_yet", _no_history_yet, MemberStage.ONBOARDING_VULNERABILITY),
    StageRule("silent_quit", _silent_quit, MemberStage.AT_RISK_SILENT_QUIT),
    StageRule("emotional_disengagement", _emotional_disengagement, MemberStage.EMOTIONAL_DISENGAGEMENT),
    StageRule("plateau", _plateau, MemberStage.PLATEAU_BOREDOM_RISK),
    StageRule("momentum", _momentum, MemberStage.MOMENTUM_IDENTITY),
    StageRule("habit_forming", _habit_forming, MemberStage.HABIT_FORMATION),
    StageRule("still_onboarding", _still_onboarding, MemberStage.ONBOARDING_VULNERABILITY),
)


def _fallback_stage(m: StageInputs) -> MemberStage:
    if m.commitment_score >= 50:
        return MemberStage.HABIT_FORMATION
    if m.days_idle >= 14 and m.commitment_score < 30:
        return MemberStage.AT_RISK_SILENT_QUIT
    if m.commitment_score < 40:
        return MemberStage.EMOTIONAL_DISENGAGEMENT
    return MemberStage.HABIT_FORMATION


def matching_rule(inputs: StageInputs) -> StageRule | None:
    return next((rule for rule in STAGE_RULES if rule.predicate(inputs)), None)


def classify_stage(inputs: StageInputs) -> MemberStage:
    rule = matching_rule(inputs)
    return rule.stage if rule else _fallback_stage(inputs)


def retention_play_for_stage(stage: MemberStage) -> str:
    return STAGE_PLAYS.get(stage, "")
