"""
Intervention engine: the daily batch orchestrator and approval workflow.

run_daily_for_tenant walks plays (oldest first) x members with a risk
snapshot x play channels, gates each candidate through the guardrails,
freezes the rendered message onto a new Intervention row and either parks
it (PENDING_APPROVAL / SCHEDULED) or sends it immediately.

Every status write is conditional on the status this code last saw, so a
concurrent approve/cancel can never be overwritten.
"""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial

from retention.config import settings
from retention.db.helpers import DatabaseError
from retention.features.interventions.domain import (
    Channel,
    Intervention,
    InterventionStatus,
    Member,
    MessageEventType,
    Outcome,
    OutcomeType,
    Play,
    RiskSnapshot,
    RunDailyResult,
)
from retention.features.interventions.guardrails import GuardrailEvaluator
from retention.features.interventions.providers import ProviderRegistry, SendResult
from retention.features.interventions.repository import InterventionStore
from retention.features.interventions.templates import (
    build_template_context,
    render_play_templates,
)
from retention.features.interventions.time_windows import (
    is_in_quiet_hours,
    next_allowed_send_time,
    parse_hhmm,
)
from retention.infrastructure.observability.logging import get_logger

from .exceptions import InterventionNotFoundError, InterventionStateError

logger = get_logger(__name__)

DEFAULT_REASON = "High risk"


def utc_now() -> datetime:
    return datetime.now(UTC)


class InterventionEngine:
    def __init__(
        self,
        store: InterventionStore,
        providers: ProviderRegistry,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.providers = providers
        self.clock = clock
        self.guardrails = GuardrailEvaluator(store)

    async def _tenant_timezone(self, tenant_id: str) -> str:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            logger.warning("Tenant not found, using default timezone", tenant_id=tenant_id)
            return settings.DEFAULT_TIMEZONE
        return tenant.timezone or settings.DEFAULT_TIMEZONE

    # =================================================================
    # DAILY BATCH
    # =================================================================

    async def run_daily_for_tenant(
        self, tenant_id: str, force_approval: bool = False
    ) -> RunDailyResult:
        """
        Run every active daily-batch play for one tenant.

        Args:
            tenant_id: Tenant to process
            force_approval: Park every created intervention in PENDING_APPROVAL

        Returns:
            RunDailyResult counters for the run

        Raises:
            ProviderConfigurationError: A play uses a channel with no provider
        """
        result = RunDailyResult()

        async with self.store.tenant_lock(tenant_id):
            timezone = await self._tenant_timezone(tenant_id)

            plays = await self.store.list_active_plays(tenant_id)
            if not plays:
                logger.info("No active plays for tenant", tenant_id=tenant_id)
                return result

            # Fail on missing credentials before anything is written
            for play in plays:
                for channel in play.channels:
                    self.providers.require(channel)

            snapshots = await self.store.latest_risk_snapshots(tenant_id)
            if not snapshots:
                logger.info("No risk snapshots for tenant", tenant_id=tenant_id)
                return result

            members = await self.store.get_members(tenant_id, list(snapshots))
            now = self.clock()

            for play in plays:
                if not self._valid_quiet_hours(play):
                    result.failed += 1
                    continue
                await self._run_play(
                    tenant_id, play, snapshots, members, timezone, now, force_approval, result
                )

        logger.info(
            "Daily intervention run completed",
            tenant_id=tenant_id,
            force_approval=force_approval,
            skip_reasons=result.skip_reasons,
            **result.to_dict(),
        )
        return result

    @staticmethod
    def _valid_quiet_hours(play: Play) -> bool:
        try:
            parse_hhmm(play.quiet_hours_start)
            parse_hhmm(play.quiet_hours_end)
        except ValueError as e:
            logger.error(
                "Play has invalid quiet hours, skipping",
                tenant_id=play.tenant_id,
                play_id=play.id,
                quiet_hours_start=play.quiet_hours_start,
                quiet_hours_end=play.quiet_hours_end,
                error=str(e),
            )
            return False
        return True

    async def _run_play(
        self,
        tenant_id: str,
        play: Play,
        snapshots: dict[str, RiskSnapshot],
        members: dict[str, Member],
        timezone: str,
        now: datetime,
        force_approval: bool,
        result: RunDailyResult,
    ) -> None:
        on_unknown_var = partial(self._log_unknown_var, play)

        for member_id, snapshot in snapshots.items():
            member = members.get(member_id)
            if member is None:
                result.record_skip("Member not found")
                continue
            if snapshot.risk_score < play.min_risk_score:
                result.record_skip("Below minimum risk score")
                continue

            context = build_template_context(member, snapshot)
            subject, body = render_play_templates(play, context, on_unknown_var)

            for channel in play.channels:
                await self._process_candidate(
                    tenant_id,
                    play,
                    member,
                    snapshot,
                    channel,
                    subject,
                    body,
                    timezone,
                    now,
                    force_approval,
                    result,
                )

    async def _process_candidate(
        self,
        tenant_id: str,
        play: Play,
        member: Member,
        snapshot: RiskSnapshot,
        channel: Channel,
        subject: str | None,
        body: str,
        timezone: str,
        now: datetime,
        force_approval: bool,
        result: RunDailyResult,
    ) -> None:
        try:
            guard = await self.guardrails.evaluate(tenant_id, member, play, channel, timezone, now)
        except DatabaseError as e:
            logger.error(
                "Guardrail check failed",
                tenant_id=tenant_id,
                play_id=play.id,
                member_id=member.id,
                channel=str(channel),
                operation=e.operation,
                error=str(e),
            )
            result.failed += 1
            return

        if not guard.allowed:
            logger.info(
                "Intervention skipped",
                tenant_id=tenant_id,
                play_id=play.id,
                member_id=member.id,
                channel=str(channel),
                reason=guard.reason,
            )
            result.record_skip(guard.reason or "Guardrail denied")
            return

        needs_approval = force_approval or play.requires_approval
        if needs_approval:
            status = InterventionStatus.PENDING_APPROVAL
        elif guard.scheduled_at:
            status = InterventionStatus.SCHEDULED
        else:
            status = InterventionStatus.CANDIDATE

        try:
            intervention = await self.store.insert_intervention(
                Intervention(
                    id=str(uuid.uuid4()),
                    tenant_id=tenant_id,
                    play_id=play.id,
                    member_id=member.id,
                    channel=channel,
                    status=status,
                    rendered_body=body,
                    rendered_subject=subject,
                    reason=snapshot.primary_risk_reason or DEFAULT_REASON,
                    scheduled_at=guard.scheduled_at,
                )
            )
            await self.store.append_message_event(
                intervention.id,
                MessageEventType.QUEUED,
                {
                    "status": str(status),
                    "scheduled_at": guard.scheduled_at.isoformat() if guard.scheduled_at else None,
                },
            )
        except DatabaseError as e:
            logger.error(
                "Failed to create intervention",
                tenant_id=tenant_id,
                play_id=play.id,
                member_id=member.id,
                channel=str(channel),
                operation=e.operation,
                error=str(e),
            )
            result.failed += 1
            return

        result.created += 1

        if needs_approval:
            result.pending_approval += 1
            return
        if guard.scheduled_at:
            result.scheduled += 1
            return

        try:
            await self._dispatch(intervention, member, InterventionStatus.CANDIDATE, now)
        except Exception:
            # _dispatch has already written FAILED where the row allowed it
            result.failed += 1
        else:
            result.sent += 1

    # =================================================================
    # DISPATCH
    # =================================================================

    async def _dispatch(
        self,
        intervention: Intervention,
        member: Member,
        expected_status: InterventionStatus,
        now: datetime,
    ) -> SendResult:
        """Send one intervention; on any failure record FAILED and re-raise."""
        try:
            dispatcher = self.providers.require(intervention.channel)
            send_result = await dispatcher.dispatch(
                member, intervention.rendered_subject, intervention.rendered_body
            )
        except Exception as e:
            logger.error(
                "Intervention send failed",
                intervention_id=intervention.id,
                channel=str(intervention.channel),
                error=str(e),
                error_type=type(e).__name__,
            )
            marked_failed = await self.store.update_intervention(
                intervention.id, expected_status, status=InterventionStatus.FAILED
            )
            if marked_failed:
                await self.store.append_message_event(
                    intervention.id, MessageEventType.FAILED, {"error": str(e)}
                )
            else:
                logger.warning(
                    "Failed send not recorded, intervention changed status concurrently",
                    intervention_id=intervention.id,
                    expected_status=str(expected_status),
                )
            raise

        await self.store.update_intervention(
            intervention.id,
            expected_status,
            status=InterventionStatus.SENT,
            sent_at=now,
            provider_message_id=send_result.provider_message_id,
        )
        await self.store.append_message_event(
            intervention.id,
            MessageEventType.SENT,
            {"provider_message_id": send_result.provider_message_id},
        )
        logger.info(
            "Intervention sent",
            intervention_id=intervention.id,
            channel=str(intervention.channel),
            provider_message_id=send_result.provider_message_id,
        )
        return send_result

    # =================================================================
    # APPROVAL WORKFLOW
    # =================================================================

    async def approve_and_send(self, intervention_id: str) -> Intervention:
        """
        Approve a PENDING_APPROVAL intervention.

        Sends immediately, or moves it to SCHEDULED when the play's quiet
        hours apply at approval time. A failed send is recorded and the
        provider error is re-raised.

        Raises:
            InterventionNotFoundError: No such intervention
            InterventionStateError: Not pending approval (or lost a race)
        """
        detail = await self.store.get_intervention(intervention_id)
        if detail is None:
            raise InterventionNotFoundError(
                "Intervention not found", intervention_id=intervention_id
            )

        intervention = detail.intervention
        if intervention.status != InterventionStatus.PENDING_APPROVAL:
            raise InterventionStateError(
                "Intervention is not pending approval",
                intervention_id=intervention_id,
                status=str(intervention.status),
            )

        play = detail.play
        timezone = await self._tenant_timezone(intervention.tenant_id)
        now = self.clock()

        if is_in_quiet_hours(now, play.quiet_hours_start, play.quiet_hours_end, timezone):
            scheduled_at = next_allowed_send_time(now, play.quiet_hours_end, timezone)
            moved = await self.store.update_intervention(
                intervention_id,
                InterventionStatus.PENDING_APPROVAL,
                status=InterventionStatus.SCHEDULED,
                scheduled_at=scheduled_at,
            )
            if not moved:
                raise self._lost_race(intervention_id)
            logger.info(
                "Approved intervention deferred by quiet hours",
                intervention_id=intervention_id,
                scheduled_at=scheduled_at.isoformat(),
            )
            return dataclasses.replace(
                intervention, status=InterventionStatus.SCHEDULED, scheduled_at=scheduled_at
            )

        # Claim the row first so two approvals cannot both send
        claimed = await self.store.update_intervention(
            intervention_id,
            InterventionStatus.PENDING_APPROVAL,
            status=InterventionStatus.CANDIDATE,
        )
        if not claimed:
            raise self._lost_race(intervention_id)

        send_result = await self._dispatch(
            intervention, detail.member, InterventionStatus.CANDIDATE, now
        )
        return dataclasses.replace(
            intervention,
            status=InterventionStatus.SENT,
            sent_at=now,
            provider_message_id=send_result.provider_message_id,
        )

    @staticmethod
    def _lost_race(intervention_id: str) -> InterventionStateError:
        logger.warning("Intervention changed status concurrently", intervention_id=intervention_id)
        return InterventionStateError(
            "Intervention is no longer pending approval", intervention_id=intervention_id
        )

    async def cancel_intervention(self, intervention_id: str) -> bool:
        """
        Cancel a PENDING_APPROVAL intervention.

        Any other status is left untouched. Returns True when the row was
        canceled by this call.
        """
        detail = await self.store.get_intervention(intervention_id)
        if detail is None:
            raise InterventionNotFoundError(
                "Intervention not found", intervention_id=intervention_id
            )

        canceled = await self.store.update_intervention(
            intervention_id,
            InterventionStatus.PENDING_APPROVAL,
            status=InterventionStatus.CANCELED,
        )
        logger.info(
            "Intervention cancel requested",
            intervention_id=intervention_id,
            canceled=canceled,
            status=str(detail.intervention.status),
        )
        return canceled

    async def mark_delivered(self, provider_message_id: str) -> bool:
        """Apply a provider delivery receipt to the matching SENT intervention."""
        intervention = await self.store.find_by_provider_message_id(provider_message_id)
        if intervention is None:
            logger.info("Delivery receipt for unknown message", provider_message_id=provider_message_id)
            return False

        delivered = await self.store.update_intervention(
            intervention.id, InterventionStatus.SENT, status=InterventionStatus.DELIVERED
        )
        if delivered:
            await self.store.append_message_event(
                intervention.id,
                MessageEventType.DELIVERED,
                {"provider_message_id": provider_message_id},
            )
        return delivered

    async def record_outcome(
        self,
        tenant_id: str,
        member_id: str,
        outcome_type: OutcomeType,
        notes: str | None = None,
        occurred_at: datetime | None = None,
    ) -> Outcome:
        return await self.store.record_outcome(
            Outcome(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                member_id=member_id,
                type=outcome_type,
                occurred_at=occurred_at or self.clock(),
                notes=notes,
            )
        )

    @staticmethod
    def _log_unknown_var(play: Play, name: str) -> None:
        logger.warning("Unknown template variable", play_id=play.id, variable=name)
