"""
Scoring package.

Pure functions that turn a member's visit history into a churn risk score,
a commitment score with habit-decay velocity, risk flags and a lifecycle
stage.
"""

from .churn_risk import ChurnRiskInput, ChurnRiskLevel, ChurnRiskResult, calculate_churn_risk
from .commitment import (
    CommitmentInput,
    CommitmentScoreResult,
    RiskFlags,
    calculate_commitment_score,
    calculate_commitment_score_as_of,
    commitment_timeline,
)
from .lifecycle import STAGE_RULES, MemberStage, StageInputs, classify_stage
from .profile import MemberActivity, MemberProfile, build_member_profile, snapshot_from_profile

__all__ = [
    "STAGE_RULES",
    "ChurnRiskInput",
    "ChurnRiskLevel",
    "ChurnRiskResult",
    "CommitmentInput",
    "CommitmentScoreResult",
    "MemberActivity",
    "MemberProfile",
    "MemberStage",
    "RiskFlags",
    "StageInputs",
    "build_member_profile",
    "calculate_churn_risk",
    "calculate_commitment_score",
    "calculate_commitment_score_as_of",
    "classify_stage",
    "commitment_timeline",
    "snapshot_from_profile",
]
