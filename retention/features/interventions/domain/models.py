"""
Domain models for the intervention engine.

Plain dataclasses mirroring the intervention_* tables plus the small value
objects passed between the guardrails, renderer and orchestrator. Rows are
read from the store into these shapes; only the orchestrator and the
approval operations create or mutate Intervention rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class TriggerType(StrEnum):
    DAILY_BATCH = "DAILY_BATCH"
    EVENT_WEBHOOK = "EVENT_WEBHOOK"


class Channel(StrEnum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    WHATSAPP = "WHATSAPP"


class InterventionStatus(StrEnum):
    CANDIDATE = "CANDIDATE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


# Statuses that count against the weekly per-member cap
CAPPED_STATUSES = (
    InterventionStatus.SENT,
    InterventionStatus.DELIVERED,
    InterventionStatus.FAILED,
)


class MessageEventType(StrEnum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    REPLIED = "REPLIED"


class OutcomeType(StrEnum):
    CONTACTED = "CONTACTED"
    REPLIED = "REPLIED"
    BOOKED = "BOOKED"
    RETURNED = "RETURNED"
    PAYMENT_RESOLVED = "PAYMENT_RESOLVED"
    FROZEN = "FROZEN"
    CANCELLED = "CANCELLED"
    SAVED = "SAVED"


@dataclass(slots=True)
class Tenant:
    """One business account; its timezone drives all quiet-hours math."""

    id: str
    name: str
    timezone: str
    auto_interventions_enabled: bool = False


@dataclass(slots=True)
class Member:
    id: str
    tenant_id: str
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    consent_email: bool = False
    consent_sms: bool = False
    consent_whatsapp: bool = False
    do_not_contact: bool = False
    external_id: str | None = None

    def has_consent(self, channel: Channel) -> bool:
        if channel == Channel.EMAIL:
            return self.consent_email
        if channel == Channel.SMS:
            return self.consent_sms
        if channel == Channel.WHATSAPP:
            return self.consent_whatsapp
        return False

    def address_for(self, channel: Channel) -> str | None:
        """Destination address for a channel (email or phone)."""
        return self.email if channel == Channel.EMAIL else self.phone


@dataclass(slots=True, frozen=True)
class RiskSnapshot:
    """Point-in-time churn score. Never mutated after creation."""

    id: str
    tenant_id: str
    member_id: str
    risk_score: int
    computed_at: datetime
    primary_risk_reason: str | None = None
    days_since_last_visit: int | None = None


@dataclass(slots=True)
class Play:
    """Tenant-configured outreach rule."""

    id: str
    tenant_id: str
    name: str
    template_body: str
    channels: list[Channel]
    min_risk_score: int = 0
    is_active: bool = True
    trigger_type: TriggerType = TriggerType.DAILY_BATCH
    requires_approval: bool = False
    quiet_hours_start: str = "21:00"
    quiet_hours_end: str = "08:00"
    max_messages_per_member_per_week: int = 2
    cooldown_days: int = 3
    template_subject: str | None = None
    description: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class Intervention:
    """One outreach attempt for one member under one play on one channel."""

    id: str
    tenant_id: str
    play_id: str
    member_id: str
    channel: Channel
    status: InterventionStatus
    rendered_body: str
    rendered_subject: str | None = None
    reason: str | None = None
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    provider_message_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class MessageEvent:
    id: str
    intervention_id: str
    type: MessageEventType
    payload: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class Outcome:
    """Business-observed result for a member, independent of any intervention."""

    id: str
    tenant_id: str
    member_id: str
    type: OutcomeType
    occurred_at: datetime
    notes: str | None = None


@dataclass(slots=True)
class InterventionDetail:
    """An intervention joined with the member and play it targets."""

    intervention: Intervention
    member: Member
    play: Play


@dataclass(slots=True)
class GuardrailResult:
    allowed: bool
    scheduled_at: datetime | None = None
    reason: str | None = None


@dataclass(slots=True)
class RunDailyResult:
    """Aggregate counters for one tenant's daily batch run."""

    created: int = 0
    scheduled: int = 0
    pending_approval: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)

    def record_skip(self, reason: str) -> None:
        self.skipped += 1
        # Bucket by reason prefix so "Weekly cap reached (2/2)" and "(3/3)" aggregate
        key = reason.split(" (")[0]
        self.skip_reasons[key] = self.skip_reasons.get(key, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "scheduled": self.scheduled,
            "pending_approval": self.pending_approval,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
        }
