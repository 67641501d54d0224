import asyncio
import dataclasses
import uuid
from collections.abc import Sequence
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from retention.db.helpers import DatabaseError
from retention.features.interventions.api.router import (
    get_daily_job,
    get_engine,
    get_risk_snapshot_job,
    get_store,
)
from retention.features.interventions.domain import (
    Channel,
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
from retention.features.interventions.jobs import DailyInterventionJob, RiskSnapshotJob
from retention.features.interventions.providers import (
    DispatchError,
    ProviderRegistry,
    SendResult,
)
from retention.features.interventions.scoring import MemberActivity
from retention.features.interventions.services import InterventionEngine

# Tuesday, London is on GMT so local time == UTC
NOON_UTC = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class FrozenClock:
    def __init__(self, now: datetime = NOON_UTC):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryInterventionStore:
    """Dict-backed InterventionStore with the same conditional-update semantics."""

    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.tenants: dict[str, Tenant] = {}
        self.members: dict[str, Member] = {}
        self.plays: list[Play] = []
        self.snapshots: list[RiskSnapshot] = []
        self.interventions: dict[str, Intervention] = {}
        self.events: list[MessageEvent] = []
        self.outcomes: list[Outcome] = []
        self.activities: list[MemberActivity] = []
        self.fail_inserts = False
        self._locks: dict[str, asyncio.Lock] = {}

    # Seeding helpers

    def add_tenant(self, tenant_id: str = "tenant-1", timezone: str = "Europe/London", **kwargs) -> Tenant:
        tenant = Tenant(id=tenant_id, name=kwargs.pop("name", "Test Gym"), timezone=timezone, **kwargs)
        self.tenants[tenant_id] = tenant
        return tenant

    def add_member(self, member_id: str = "member-1", tenant_id: str = "tenant-1", **kwargs) -> Member:
        defaults = {
            "first_name": "Sam",
            "last_name": "Lee",
            "email": "sam@example.com",
            "phone": "+447700900123",
            "consent_email": True,
        }
        member = Member(id=member_id, tenant_id=tenant_id, **{**defaults, **kwargs})
        self.members[member_id] = member
        return member

    def add_play(self, play_id: str = "play-1", tenant_id: str = "tenant-1", **kwargs) -> Play:
        defaults = {
            "name": "Win back",
            "template_body": "Hi {{firstName}}, we miss you!",
            "template_subject": "We miss you, {{firstName}}",
            "channels": [Channel.EMAIL],
            "min_risk_score": 50,
            "created_at": self.clock() - timedelta(days=30 - len(self.plays)),
        }
        play = Play(id=play_id, tenant_id=tenant_id, **{**defaults, **kwargs})
        self.plays.append(play)
        return play

    def add_snapshot(
        self, member_id: str = "member-1", risk_score: int = 70, tenant_id: str = "tenant-1", **kwargs
    ) -> RiskSnapshot:
        snapshot = RiskSnapshot(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            member_id=member_id,
            risk_score=risk_score,
            computed_at=kwargs.pop("computed_at", self.clock()),
            **kwargs,
        )
        self.snapshots.append(snapshot)
        return snapshot

    def add_activity(
        self,
        member_id: str = "member-1",
        joined_date: date = date(2025, 9, 1),
        visit_dates: Sequence[date] = (),
        tenant_id: str = "tenant-1",
        **kwargs,
    ) -> MemberActivity:
        activity = MemberActivity(
            member_id=member_id,
            tenant_id=tenant_id,
            joined_date=joined_date,
            visit_dates=list(visit_dates),
            **kwargs,
        )
        self.activities.append(activity)
        return activity

    def events_for(self, intervention_id: str) -> list[MessageEvent]:
        return [e for e in self.events if e.intervention_id == intervention_id]

    # InterventionStore

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self.tenants.get(tenant_id)

    async def list_tenants(self) -> list[Tenant]:
        return sorted(self.tenants.values(), key=lambda t: t.id)

    async def list_auto_intervention_tenants(self) -> list[Tenant]:
        return [t for t in self.tenants.values() if t.auto_interventions_enabled]

    async def list_active_plays(
        self, tenant_id: str, trigger_type: TriggerType = TriggerType.DAILY_BATCH
    ) -> list[Play]:
        plays = [
            p
            for p in self.plays
            if p.tenant_id == tenant_id and p.is_active and p.trigger_type == trigger_type
        ]
        return sorted(plays, key=lambda p: p.created_at)

    async def latest_risk_snapshots(self, tenant_id: str) -> dict[str, RiskSnapshot]:
        latest: dict[str, RiskSnapshot] = {}
        for snapshot in self.snapshots:
            if snapshot.tenant_id != tenant_id:
                continue
            current = latest.get(snapshot.member_id)
            if current is None or snapshot.computed_at > current.computed_at:
                latest[snapshot.member_id] = snapshot
        return latest

    async def insert_play(self, play: Play) -> Play:
        stored = dataclasses.replace(play, created_at=play.created_at or self.clock())
        self.plays.append(stored)
        return stored

    async def insert_risk_snapshot(self, snapshot: RiskSnapshot) -> RiskSnapshot:
        if self.fail_inserts:
            raise DatabaseError("insert failed", operation="execute_query")
        self.snapshots.append(snapshot)
        return snapshot

    async def list_member_activity(self, tenant_id: str) -> list[MemberActivity]:
        return [
            a for a in self.activities if a.tenant_id == tenant_id and a.status in ("active", "inactive")
        ]

    async def get_members(self, tenant_id: str, member_ids: Sequence[str]) -> dict[str, Member]:
        return {
            mid: self.members[mid]
            for mid in member_ids
            if mid in self.members and self.members[mid].tenant_id == tenant_id
        }

    async def insert_intervention(self, intervention: Intervention) -> Intervention:
        if self.fail_inserts:
            raise DatabaseError("insert failed", operation="fetch_one")
        now = self.clock()
        stored = dataclasses.replace(intervention, created_at=now, updated_at=now)
        self.interventions[stored.id] = stored
        return dataclasses.replace(stored)

    async def update_intervention(
        self, intervention_id: str, expected_status: InterventionStatus, **changes: Any
    ) -> bool:
        current = self.interventions.get(intervention_id)
        if current is None or current.status != expected_status:
            return False
        self.interventions[intervention_id] = dataclasses.replace(
            current, updated_at=self.clock(), **changes
        )
        return True

    async def get_intervention(self, intervention_id: str) -> InterventionDetail | None:
        intervention = self.interventions.get(intervention_id)
        if intervention is None:
            return None
        play = next(p for p in self.plays if p.id == intervention.play_id)
        return InterventionDetail(
            intervention=dataclasses.replace(intervention),
            member=self.members[intervention.member_id],
            play=play,
        )

    async def count_member_interventions_since(
        self,
        tenant_id: str,
        member_id: str,
        since: datetime,
        statuses: Sequence[InterventionStatus],
    ) -> int:
        return sum(
            1
            for i in self.interventions.values()
            if i.tenant_id == tenant_id
            and i.member_id == member_id
            and i.status in statuses
            and (i.sent_at or i.updated_at) >= since
        )

    async def exists_intervention_since(
        self,
        tenant_id: str,
        play_id: str,
        member_id: str,
        since: datetime,
        exclude_statuses: Sequence[InterventionStatus] = (),
    ) -> bool:
        return any(
            i.tenant_id == tenant_id
            and i.play_id == play_id
            and i.member_id == member_id
            and i.created_at >= since
            and i.status not in exclude_statuses
            for i in self.interventions.values()
        )

    async def append_message_event(
        self,
        intervention_id: str,
        event_type: MessageEventType,
        payload: dict[str, Any] | None = None,
    ) -> MessageEvent:
        event = MessageEvent(
            id=str(uuid.uuid4()),
            intervention_id=intervention_id,
            type=event_type,
            payload=payload,
            created_at=self.clock(),
        )
        self.events.append(event)
        return event

    async def list_message_events(self, intervention_id: str) -> list[MessageEvent]:
        return self.events_for(intervention_id)

    async def find_by_provider_message_id(self, provider_message_id: str) -> Intervention | None:
        return next(
            (i for i in self.interventions.values() if i.provider_message_id == provider_message_id),
            None,
        )

    async def record_outcome(self, outcome: Outcome) -> Outcome:
        self.outcomes.append(outcome)
        return outcome

    @asynccontextmanager
    async def tenant_lock(self, tenant_id: str):
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with lock:
            yield


class RecordingDispatcher:
    """ChannelDispatcher that records sends and can be told to fail."""

    def __init__(self, channel: Channel):
        self.channel = channel
        self.sent: list[tuple[Member, str | None, str]] = []
        self.error: Exception | None = None

    async def dispatch(self, member: Member, subject: str | None, body: str) -> SendResult:
        if self.error:
            raise self.error
        self.sent.append((member, subject, body))
        return SendResult(provider_message_id=f"{self.channel.lower()}-msg-{len(self.sent)}")

    def fail_with(self, message: str = "provider down") -> None:
        self.error = DispatchError(message, provider="fake", status_code=503)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(clock):
    return InMemoryInterventionStore(clock)


@pytest.fixture
def dispatchers():
    return {channel: RecordingDispatcher(channel) for channel in Channel}


@pytest.fixture
def providers(dispatchers):
    return ProviderRegistry(list(dispatchers.values()))


@pytest.fixture
def engine(store, providers, clock):
    return InterventionEngine(store, providers, clock=clock)


@pytest.fixture
def apply_engine_override(store, engine):
    # One job per test so overlapping cron calls share the running flag
    daily_job = DailyInterventionJob(engine, store)
    risk_snapshot_job = RiskSnapshotJob(store, clock=store.clock)
    applied = []

    def _apply(app):
        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_engine] = lambda: engine
        app.dependency_overrides[get_daily_job] = lambda: daily_job
        app.dependency_overrides[get_risk_snapshot_job] = lambda: risk_snapshot_job
        applied.append(app)

    yield _apply

    for app in applied:
        app.dependency_overrides.clear()
