"""
Postgres implementation of the intervention store.

Plain SQL over the intervention_* tables through the shared db helpers.
Status writes are always conditional on the expected current status so a
stale in-memory view can never overwrite a newer transition.
"""

import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import Any

from psycopg.types.json import Jsonb

from retention.config import settings
from retention.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from retention.db.pool import get_db_connection
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
from retention.features.interventions.scoring import MemberActivity
from retention.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Members the scoring job recomputes; cancelled members keep their last snapshot
SCORED_MEMBER_STATUSES = ("active", "inactive")

# Columns update_intervention is allowed to touch
UPDATABLE_COLUMNS = frozenset(
    {"status", "scheduled_at", "sent_at", "provider_message_id", "reason"}
)

INTERVENTION_COLUMNS = """
    id, tenant_id, play_id, member_id, channel, status, rendered_body,
    rendered_subject, reason, scheduled_at, sent_at, provider_message_id,
    created_at, updated_at
"""


def _tenant_from_row(row: dict[str, Any]) -> Tenant:
    return Tenant(
        id=str(row["id"]),
        name=row.get("name") or "",
        timezone=row.get("timezone") or settings.DEFAULT_TIMEZONE,
        auto_interventions_enabled=bool(row.get("auto_interventions_enabled")),
    )


def _member_from_row(row: dict[str, Any]) -> Member:
    return Member(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        email=row.get("email"),
        phone=row.get("phone"),
        consent_email=bool(row.get("consent_email")),
        consent_sms=bool(row.get("consent_sms")),
        consent_whatsapp=bool(row.get("consent_whatsapp")),
        do_not_contact=bool(row.get("do_not_contact")),
        external_id=row.get("external_id"),
    )


def _snapshot_from_row(row: dict[str, Any]) -> RiskSnapshot:
    return RiskSnapshot(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        member_id=str(row["member_id"]),
        risk_score=int(row["risk_score"]),
        computed_at=row["computed_at"],
        primary_risk_reason=row.get("primary_risk_reason"),
        days_since_last_visit=row.get("days_since_last_visit"),
    )


def _play_from_row(row: dict[str, Any]) -> Play:
    return Play(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        name=row["name"],
        description=row.get("description"),
        is_active=bool(row["is_active"]),
        trigger_type=TriggerType(row["trigger_type"]),
        min_risk_score=int(row["min_risk_score"]),
        channels=[Channel(c) for c in row.get("channels") or []],
        requires_approval=bool(row["requires_approval"]),
        quiet_hours_start=row["quiet_hours_start"],
        quiet_hours_end=row["quiet_hours_end"],
        max_messages_per_member_per_week=int(row["max_messages_per_member_per_week"]),
        cooldown_days=int(row["cooldown_days"]),
        template_subject=row.get("template_subject"),
        template_body=row["template_body"],
        created_at=row.get("created_at"),
    )


def _intervention_from_row(row: dict[str, Any]) -> Intervention:
    return Intervention(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        play_id=str(row["play_id"]),
        member_id=str(row["member_id"]),
        channel=Channel(row["channel"]),
        status=InterventionStatus(row["status"]),
        rendered_body=row["rendered_body"],
        rendered_subject=row.get("rendered_subject"),
        reason=row.get("reason"),
        scheduled_at=row.get("scheduled_at"),
        sent_at=row.get("sent_at"),
        provider_message_id=row.get("provider_message_id"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _event_from_row(row: dict[str, Any]) -> MessageEvent:
    return MessageEvent(
        id=str(row["id"]),
        intervention_id=str(row["intervention_id"]),
        type=MessageEventType(row["type"]),
        payload=row.get("payload"),
        created_at=row.get("created_at"),
    )


class PostgresInterventionStore:
    """InterventionStore backed by the shared psycopg pool."""

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        row = await fetch_one(
            """
            SELECT id, name, timezone, auto_interventions_enabled
            FROM intervention_tenants
            WHERE id = %s
            """,
            (tenant_id,),
        )
        return _tenant_from_row(row) if row else None

    async def list_tenants(self) -> list[Tenant]:
        rows = await fetch_all(
            """
            SELECT id, name, timezone, auto_interventions_enabled
            FROM intervention_tenants
            ORDER BY id
            """
        )
        return [_tenant_from_row(row) for row in rows]

    async def list_auto_intervention_tenants(self) -> list[Tenant]:
        rows = await fetch_all(
            """
            SELECT id, name, timezone, auto_interventions_enabled
            FROM intervention_tenants
            WHERE auto_interventions_enabled = TRUE
            ORDER BY id
            """
        )
        return [_tenant_from_row(row) for row in rows]

    async def list_active_plays(
        self, tenant_id: str, trigger_type: TriggerType = TriggerType.DAILY_BATCH
    ) -> list[Play]:
        rows = await fetch_all(
            """
            SELECT *
            FROM intervention_plays
            WHERE tenant_id = %s
              AND is_active = TRUE
              AND trigger_type = %s
            ORDER BY created_at ASC
            """,
            (tenant_id, str(trigger_type)),
        )
        return [_play_from_row(row) for row in rows]

    async def latest_risk_snapshots(self, tenant_id: str) -> dict[str, RiskSnapshot]:
        rows = await fetch_all(
            """
            SELECT DISTINCT ON (member_id)
                id, tenant_id, member_id, risk_score, primary_risk_reason,
                days_since_last_visit, computed_at
            FROM intervention_risk_snapshots
            WHERE tenant_id = %s
            ORDER BY member_id, computed_at DESC
            """,
            (tenant_id,),
        )
        return {str(row["member_id"]): _snapshot_from_row(row) for row in rows}

    async def insert_play(self, play: Play) -> Play:
        row = await fetch_one(
            """
            INSERT INTO intervention_plays (
                id, tenant_id, name, description, is_active, trigger_type,
                min_risk_score, channels, requires_approval, quiet_hours_start,
                quiet_hours_end, max_messages_per_member_per_week, cooldown_days,
                template_subject, template_body
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                play.id,
                play.tenant_id,
                play.name,
                play.description,
                play.is_active,
                str(play.trigger_type),
                play.min_risk_score,
                [str(c) for c in play.channels],
                play.requires_approval,
                play.quiet_hours_start,
                play.quiet_hours_end,
                play.max_messages_per_member_per_week,
                play.cooldown_days,
                play.template_subject,
                play.template_body,
            ),
        )
        return _play_from_row(row)

    async def insert_risk_snapshot(self, snapshot: RiskSnapshot) -> RiskSnapshot:
        await execute_query(
            """
            INSERT INTO intervention_risk_snapshots (
                id, tenant_id, member_id, risk_score, primary_risk_reason,
                days_since_last_visit, computed_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                snapshot.id,
                snapshot.tenant_id,
                snapshot.member_id,
                snapshot.risk_score,
                snapshot.primary_risk_reason,
                snapshot.days_since_last_visit,
                snapshot.computed_at,
            ),
        )
        return snapshot

    async def list_member_activity(self, tenant_id: str) -> list[MemberActivity]:
        members = await fetch_all(
            """
            SELECT id, tenant_id, joined_date, status, distance_km, age,
                   employment_status, student_status, has_received_campaign,
                   expected_visits_per_week
            FROM intervention_members
            WHERE tenant_id = %s
              AND joined_date IS NOT NULL
              AND status = ANY(%s::text[])
            ORDER BY id
            """,
            (tenant_id, list(SCORED_MEMBER_STATUSES)),
        )
        if not members:
            return []

        visits = await fetch_all(
            """
            SELECT member_id, visit_date
            FROM intervention_member_visits
            WHERE tenant_id = %s
              AND member_id = ANY(%s)
            ORDER BY visit_date ASC
            """,
            (tenant_id, [row["id"] for row in members]),
        )
        visits_by_member: dict[str, list[date]] = defaultdict(list)
        for row in visits:
            visits_by_member[str(row["member_id"])].append(row["visit_date"])

        return [
            MemberActivity(
                member_id=str(row["id"]),
                tenant_id=str(row["tenant_id"]),
                joined_date=row["joined_date"],
                visit_dates=visits_by_member.get(str(row["id"]), []),
                status=row.get("status") or "active",
                distance_km=row.get("distance_km"),
                age=row.get("age"),
                employment_status=row.get("employment_status"),
                student_status=row.get("student_status"),
                has_received_campaign=bool(row.get("has_received_campaign")),
                expected_visits_per_week=row.get("expected_visits_per_week"),
            )
            for row in members
        ]

    async def get_members(self, tenant_id: str, member_ids: Sequence[str]) -> dict[str, Member]:
        if not member_ids:
            return {}

        rows = await fetch_all(
            """
            SELECT *
            FROM intervention_members
            WHERE tenant_id = %s
              AND id = ANY(%s)
            """,
            (tenant_id, list(member_ids)),
        )
        return {str(row["id"]): _member_from_row(row) for row in rows}

    async def insert_intervention(self, intervention: Intervention) -> Intervention:
        row = await fetch_one(
            f"""
            INSERT INTO intervention_interventions (
                id, tenant_id, play_id, member_id, channel, status,
                rendered_body, rendered_subject, reason, scheduled_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {INTERVENTION_COLUMNS}
            """,
            (
                intervention.id,
                intervention.tenant_id,
                intervention.play_id,
                intervention.member_id,
                str(intervention.channel),
                str(intervention.status),
                intervention.rendered_body,
                intervention.rendered_subject,
                intervention.reason,
                intervention.scheduled_at,
            ),
        )
        return _intervention_from_row(row)

    async def update_intervention(
        self,
        intervention_id: str,
        expected_status: InterventionStatus,
        **changes: Any,
    ) -> bool:
        unknown = set(changes) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update intervention columns: {sorted(unknown)}")

        assignments = [f"{column} = %s" for column in changes]
        params = [str(v) if isinstance(v, InterventionStatus) else v for v in changes.values()]

        query = f"""
            UPDATE intervention_interventions
            SET {", ".join([*assignments, "updated_at = NOW()"])}
            WHERE id = %s
              AND status = %s
        """
        updated = await execute_query(query, (*params, intervention_id, str(expected_status)))
        if not updated:
            logger.info(
                "Conditional intervention update matched no row",
                intervention_id=intervention_id,
                expected_status=str(expected_status),
            )
        return updated > 0

    async def get_intervention(self, intervention_id: str) -> InterventionDetail | None:
        row = await fetch_one(
            f"SELECT {INTERVENTION_COLUMNS} FROM intervention_interventions WHERE id = %s",
            (intervention_id,),
        )
        if not row:
            return None

        intervention = _intervention_from_row(row)
        member_row = await fetch_one(
            "SELECT * FROM intervention_members WHERE id = %s", (intervention.member_id,)
        )
        play_row = await fetch_one(
            "SELECT * FROM intervention_plays WHERE id = %s", (intervention.play_id,)
        )
        if not member_row or not play_row:
            logger.error(
                "Intervention references missing member or play",
                intervention_id=intervention_id,
                member_found=bool(member_row),
                play_found=bool(play_row),
            )
            return None

        return InterventionDetail(
            intervention=intervention,
            member=_member_from_row(member_row),
            play=_play_from_row(play_row),
        )

    async def count_member_interventions_since(
        self,
        tenant_id: str,
        member_id: str,
        since: datetime,
        statuses: Sequence[InterventionStatus],
    ) -> int:
        # FAILED rows have no sent_at; the failure time is their last update
        count = await fetch_val(
            """
            SELECT COUNT(*)
            FROM intervention_interventions
            WHERE tenant_id = %s
              AND member_id = %s
              AND status = ANY(%s::text[])
              AND COALESCE(sent_at, updated_at) >= %s
            """,
            (tenant_id, member_id, [str(s) for s in statuses], since),
        )
        return int(count or 0)

    async def exists_intervention_since(
        self,
        tenant_id: str,
        play_id: str,
        member_id: str,
        since: datetime,
        exclude_statuses: Sequence[InterventionStatus] = (),
    ) -> bool:
        found = await fetch_val(
            """
            SELECT EXISTS (
                SELECT 1
                FROM intervention_interventions
                WHERE tenant_id = %s
                  AND play_id = %s
                  AND member_id = %s
                  AND created_at >= %s
                  AND NOT (status = ANY(%s::text[]))
            )
            """,
            (tenant_id, play_id, member_id, since, [str(s) for s in exclude_statuses]),
        )
        return bool(found)

    async def append_message_event(
        self,
        intervention_id: str,
        event_type: MessageEventType,
        payload: dict[str, Any] | None = None,
    ) -> MessageEvent:
        row = await fetch_one(
            """
            INSERT INTO intervention_message_events (id, intervention_id, type, payload)
            VALUES (%s, %s, %s, %s)
            RETURNING id, intervention_id, type, payload, created_at
            """,
            (
                str(uuid.uuid4()),
                intervention_id,
                str(event_type),
                Jsonb(payload) if payload is not None else None,
            ),
        )
        return _event_from_row(row)

    async def list_message_events(self, intervention_id: str) -> list[MessageEvent]:
        rows = await fetch_all(
            """
            SELECT id, intervention_id, type, payload, created_at
            FROM intervention_message_events
            WHERE intervention_id = %s
            ORDER BY created_at ASC
            """,
            (intervention_id,),
        )
        return [_event_from_row(row) for row in rows]

    async def find_by_provider_message_id(self, provider_message_id: str) -> Intervention | None:
        row = await fetch_one(
            f"""
            SELECT {INTERVENTION_COLUMNS}
            FROM intervention_interventions
            WHERE provider_message_id = %s
            """,
            (provider_message_id,),
        )
        return _intervention_from_row(row) if row else None

    async def record_outcome(self, outcome: Outcome) -> Outcome:
        await execute_query(
            """
            INSERT INTO intervention_outcomes (id, tenant_id, member_id, type, notes, occurred_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                outcome.id,
                outcome.tenant_id,
                outcome.member_id,
                str(outcome.type),
                outcome.notes,
                outcome.occurred_at or datetime.now(UTC),
            ),
        )
        return outcome

    @asynccontextmanager
    async def tenant_lock(self, tenant_id: str) -> AsyncIterator[None]:
        """
        Session-level advisory lock held on a dedicated pooled connection.

        Blocks until any other run for the same tenant releases it.
        """
        key = f"interventions:{tenant_id}"
        async with await get_db_connection() as conn:
            await conn.execute("SELECT pg_advisory_lock(hashtext(%s))", (key,))
            logger.debug("Tenant lock acquired", tenant_id=tenant_id)
            try:
                yield
            finally:
                await conn.execute("SELECT pg_advisory_unlock(hashtext(%s))", (key,))
                logger.debug("Tenant lock released", tenant_id=tenant_id)
