"""
Intervention API request/response models.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from retention.features.interventions.domain import (
    Channel,
    Intervention,
    InterventionStatus,
    Play,
    RunDailyResult,
    TriggerType,
)

HHMM_PATTERN = r"^([01]?\d|2[0-3]):[0-5]\d$"


class PlayCreateRequest(BaseModel):
    """Tenant-submitted play configuration."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    is_active: bool = True
    trigger_type: TriggerType = TriggerType.DAILY_BATCH
    min_risk_score: int = Field(..., ge=0, le=100)
    channels: list[Channel] = Field(..., min_length=1)
    requires_approval: bool = False
    quiet_hours_start: str = Field(default="21:00", pattern=HHMM_PATTERN)
    quiet_hours_end: str = Field(default="08:00", pattern=HHMM_PATTERN)
    max_messages_per_member_per_week: int = Field(default=2, ge=1, le=20)
    cooldown_days: int = Field(default=3, ge=0, le=30)
    template_subject: str | None = Field(default=None, max_length=500)
    template_body: str = Field(..., min_length=1, max_length=10000)

    def to_play(self, tenant_id: str, play_id: str | None = None) -> Play:
        return Play(
            id=play_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            trigger_type=self.trigger_type,
            min_risk_score=self.min_risk_score,
            channels=list(self.channels),
            requires_approval=self.requires_approval,
            quiet_hours_start=self.quiet_hours_start,
            quiet_hours_end=self.quiet_hours_end,
            max_messages_per_member_per_week=self.max_messages_per_member_per_week,
            cooldown_days=self.cooldown_days,
            template_subject=self.template_subject,
            template_body=self.template_body,
            created_at=datetime.now(UTC),
        )


class RunDailyResponse(BaseModel):
    tenant_id: str
    created: int
    scheduled: int
    pending_approval: int
    sent: int
    failed: int
    skipped: int
    skip_reasons: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, tenant_id: str, result: RunDailyResult) -> "RunDailyResponse":
        return cls(tenant_id=tenant_id, skip_reasons=result.skip_reasons, **result.to_dict())


class InterventionResponse(BaseModel):
    id: str
    status: InterventionStatus
    channel: Channel
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    provider_message_id: str | None = None

    @classmethod
    def from_domain(cls, intervention: Intervention) -> "InterventionResponse":
        return cls(
            id=intervention.id,
            status=intervention.status,
            channel=intervention.channel,
            scheduled_at=intervention.scheduled_at,
            sent_at=intervention.sent_at,
            provider_message_id=intervention.provider_message_id,
        )


class CancelResponse(BaseModel):
    id: str
    canceled: bool


class CronRunResponse(BaseModel):
    tenants_processed: int
    tenants_failed: int
    results: list[dict[str, Any]] = Field(default_factory=list)


class PlayResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    is_active: bool
    trigger_type: TriggerType
    min_risk_score: int
    channels: list[Channel]
    requires_approval: bool
    quiet_hours_start: str
    quiet_hours_end: str
    created_at: datetime | None = None

    @classmethod
    def from_domain(cls, play: Play) -> "PlayResponse":
        return cls(
            id=play.id,
            tenant_id=play.tenant_id,
            name=play.name,
            is_active=play.is_active,
            trigger_type=play.trigger_type,
            min_risk_score=play.min_risk_score,
            channels=list(play.channels),
            requires_approval=play.requires_approval,
            quiet_hours_start=play.quiet_hours_start,
            quiet_hours_end=play.quiet_hours_end,
            created_at=play.created_at,
        )


class RiskSnapshotRunResponse(BaseModel):
    tenants_processed: int
    members_scored: int
    members_failed: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
