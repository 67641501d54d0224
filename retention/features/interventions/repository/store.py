"""
Persistence contract for the intervention engine.

The engine, guardrails and approval workflow only ever talk to this
protocol. ``PostgresInterventionStore`` is the production implementation;
tests use an in-memory one.
"""

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from retention.features.interventions.domain import (
    Intervention,
    InterventionDetail,
    InterventionStatus,
    Member,
    MessageEvent,
    MessageEventType,
    Outcome,
    Play,
    RiskSnapshot,
    Tenant,
    TriggerType,
)
from retention.features.interventions.scoring import MemberActivity


class InterventionStore(Protocol):
    async def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    async def list_tenants(self) -> list[Tenant]: ...

    async def list_auto_intervention_tenants(self) -> list[Tenant]: ...

    async def list_active_plays(
        self, tenant_id: str, trigger_type: TriggerType = TriggerType.DAILY_BATCH
    ) -> list[Play]:
        """Active plays of one trigger type, oldest first."""
        ...

    async def latest_risk_snapshots(self, tenant_id: str) -> dict[str, RiskSnapshot]:
        """Most recent snapshot per member, keyed by member id."""
        ...

    async def insert_play(self, play: Play) -> Play: ...

    async def insert_risk_snapshot(self, snapshot: RiskSnapshot) -> RiskSnapshot: ...

    async def list_member_activity(self, tenant_id: str) -> list[MemberActivity]:
        """Joined date, profile fields and visit dates for every scorable member."""
        ...

    async def get_members(self, tenant_id: str, member_ids: Sequence[str]) -> dict[str, Member]: ...

    async def insert_intervention(self, intervention: Intervention) -> Intervention: ...

    async def update_intervention(
        self,
        intervention_id: str,
        expected_status: InterventionStatus,
        **changes: Any,
    ) -> bool:
        """
        Apply ``changes`` only if the row is still in ``expected_status``.

        Returns False when the row was missing or had already moved on.
        """
        ...

    async def get_intervention(self, intervention_id: str) -> InterventionDetail | None: ...

    async def count_member_interventions_since(
        self,
        tenant_id: str,
        member_id: str,
        since: datetime,
        statuses: Sequence[InterventionStatus],
    ) -> int: ...

    async def exists_intervention_since(
        self,
        tenant_id: str,
        play_id: str,
        member_id: str,
        since: datetime,
        exclude_statuses: Sequence[InterventionStatus] = (),
    ) -> bool: ...

    async def append_message_event(
        self,
        intervention_id: str,
        event_type: MessageEventType,
        payload: dict[str, Any] | None = None,
    ) -> MessageEvent: ...

    async def list_message_events(self, intervention_id: str) -> list[MessageEvent]: ...

    async def find_by_provider_message_id(self, provider_message_id: str) -> Intervention | None: ...

    async def record_outcome(self, outcome: Outcome) -> Outcome: ...

    def tenant_lock(self, tenant_id: str) -> AbstractAsyncContextManager[None]:
        """Serialize batch runs for one tenant."""
        ...
