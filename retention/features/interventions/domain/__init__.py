"""
Domain subpackage for the intervention engine.
"""

from .models import (
    CAPPED_STATUSES,
    Channel,
    GuardrailResult,
    Intervention,
    InterventionDetail,
    InterventionStatus,
    Member,
    MessageEvent,
    MessageEventType,
    Outcome,
    OutcomeType,
    Play,
    RiskSnapshot,
    RunDailyResult,
    Tenant,
    TriggerType,
)

__all__ = [
    "CAPPED_STATUSES",
    "Channel",
    "GuardrailResult",
    "Intervention",
    "InterventionDetail",
    "InterventionStatus",
    "Member",
    "MessageEvent",
    "MessageEventType",
    "Outcome",
    "OutcomeType",
    "Play",
    "RiskSnapshot",
    "RunDailyResult",
    "Tenant",
    "TriggerType",
]
