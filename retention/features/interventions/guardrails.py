"""
Guardrail evaluation for a (member, play, channel) candidate.

Checks run in a fixed order and stop at the first denial: do-not-contact,
channel consent, quiet hours, weekly cap, cooldown. Quiet hours never deny;
they defer the send to the end of the window.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from retention.features.interventions.domain import (
    CAPPED_STATUSES,
    Channel,
    GuardrailResult,
    InterventionStatus,
    Member,
    Play,
)
from retention.features.interventions.repository import InterventionStore
from retention.features.interventions.time_windows import (
    is_in_quiet_hours,
    next_allowed_send_time,
)
from retention.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

WEEKLY_CAP_WINDOW = timedelta(days=7)

CONSENT_LABELS = {
    Channel.EMAIL: "email",
    Channel.SMS: "SMS",
    Channel.WHATSAPP: "WhatsApp",
}


class GuardrailEvaluator:
    """Policy gate in front of every intervention the engine creates."""

    def __init__(self, store: InterventionStore):
        self.store = store

    @staticmethod
    def check_do_not_contact(member: Member) -> GuardrailResult | None:
        if member.do_not_contact:
            return GuardrailResult(allowed=False, reason="Member has doNotContact")
        return None

    @staticmethod
    def check_consent(member: Member, channel: Channel) -> GuardrailResult | None:
        if not member.has_consent(channel):
            label = CONSENT_LABELS.get(channel, str(channel))
            return GuardrailResult(allowed=False, reason=f"No {label} consent")
        return None

    @staticmethod
    def check_quiet_hours(play: Play, timezone: str, now: datetime) -> datetime | None:
        """Return the deferred send time when ``now`` is inside quiet hours."""
        if is_in_quiet_hours(now, play.quiet_hours_start, play.quiet_hours_end, timezone):
            return next_allowed_send_time(now, play.quiet_hours_end, timezone)
        return None

    async def check_weekly_cap(
        self, tenant_id: str, member: Member, play: Play, now: datetime
    ) -> GuardrailResult | None:
        sent_this_week = await self.store.count_member_interventions_since(
            tenant_id,
            member.id,
            since=now - WEEKLY_CAP_WINDOW,
            statuses=CAPPED_STATUSES,
        )
        cap = play.max_messages_per_member_per_week
        if sent_this_week >= cap:
            return GuardrailResult(
                allowed=False, reason=f"Weekly cap reached ({sent_this_week}/{cap})"
            )
        return None

    async def check_cooldown(
        self, tenant_id: str, member: Member, play: Play, now: datetime
    ) -> GuardrailResult | None:
        # Inclusive bound: with cooldown_days=0 rows created during this run still count
        since = now - timedelta(days=play.cooldown_days)
        recent = await self.store.exists_intervention_since(
            tenant_id,
            play.id,
            member.id,
            since=since,
            exclude_statuses=(InterventionStatus.CANCELED,),
        )
        if recent:
            return GuardrailResult(
                allowed=False,
                reason=f"Cooldown active ({play.cooldown_days} days for this play)",
            )
        return None

    async def evaluate(
        self,
        tenant_id: str,
        member: Member,
        play: Play,
        channel: Channel,
        timezone: str,
        now: datetime,
    ) -> GuardrailResult:
        denied = self.check_do_not_contact(member) or self.check_consent(member, channel)
        if denied:
            return denied

        scheduled_at = self.check_quiet_hours(play, timezone, now)

        denied = await self.check_weekly_cap(tenant_id, member, play, now)
        if denied:
            return denied

        denied = await self.check_cooldown(tenant_id, member, play, now)
        if denied:
            return denied

        if scheduled_at:
            logger.debug(
                "Send deferred by quiet hours",
                tenant_id=tenant_id,
                member_id=member.id,
                play_id=play.id,
                scheduled_at=scheduled_at.isoformat(),
            )
        return GuardrailResult(allowed=True, scheduled_at=scheduled_at)
