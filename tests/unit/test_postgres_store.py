"""SQL shape checks for the Postgres store with the db helpers mocked out."""

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock

import pytest

from retention.features.interventions.domain import (
    Channel,
    InterventionStatus,
    MessageEventType,
    Play,
    RiskSnapshot,
)
from retention.features.interventions.repository import postgres
from retention.features.interventions.repository.postgres import PostgresInterventionStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

INTERVENTION_ROW = {
    "id": "int-1",
    "tenant_id": "tenant-1",
    "play_id": "play-1",
    "member_id": "member-1",
    "channel": "EMAIL",
    "status": "PENDING_APPROVAL",
    "rendered_body": "Hi Sam",
    "rendered_subject": "We miss you",
    "reason": "No visit in 40 days",
    "scheduled_at": None,
    "sent_at": None,
    "provider_message_id": None,
    "created_at": NOW,
    "updated_at": NOW,
}

PLAY_ROW = {
    "id": "play-1",
    "tenant_id": "tenant-1",
    "name": "Win back",
    "description": None,
    "is_active": True,
    "trigger_type": "DAILY_BATCH",
    "min_risk_score": 50,
    "channels": ["EMAIL", "SMS"],
    "requires_approval": True,
    "quiet_hours_start": "21:00",
    "quiet_hours_end": "08:00",
    "max_messages_per_member_per_week": 2,
    "cooldown_days": 3,
    "template_subject": None,
    "template_body": "Hi {{firstName}}",
    "created_at": NOW,
}

MEMBER_ROW = {
    "id": "member-1",
    "tenant_id": "tenant-1",
    "first_name": "Sam",
    "last_name": "Lee",
    "email": "sam@example.com",
    "phone": None,
    "consent_email": True,
    "consent_sms": None,
    "consent_whatsapp": False,
    "do_not_contact": False,
}


@pytest.fixture
def store():
    return PostgresInterventionStore()


@pytest.mark.asyncio
async def test_update_is_conditional_on_expected_status(store, monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(postgres, "execute_query", execute)

    updated = await store.update_intervention(
        "int-1",
        InterventionStatus.SENT,
        status=InterventionStatus.DELIVERED,
    )

    assert updated is True
    query, params = execute.await_args.args
    assert "SET status = %s, updated_at = NOW()" in query
    assert "WHERE id = %s" in query
    assert "AND status = %s" in query
    assert params == ("DELIVERED", "int-1", "SENT")


@pytest.mark.asyncio
async def test_update_reports_lost_race(store, monkeypatch):
    monkeypatch.setattr(postgres, "execute_query", AsyncMock(return_value=0))

    updated = await store.update_intervention(
        "int-1", InterventionStatus.PENDING_APPROVAL, status=InterventionStatus.CANCELED
    )

    assert updated is False


@pytest.mark.asyncio
async def test_update_rejects_unknown_columns(store, monkeypatch):
    execute = AsyncMock()
    monkeypatch.setattr(postgres, "execute_query", execute)

    with pytest.raises(ValueError, match="rendered_body"):
        await store.update_intervention(
            "int-1", InterventionStatus.SENT, rendered_body="changed"
        )

    execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_latest_snapshots_keyed_by_member(store, monkeypatch):
    fetch = AsyncMock(
        return_value=[
            {
                "id": "snap-1",
                "tenant_id": "tenant-1",
                "member_id": "member-1",
                "risk_score": 72,
                "primary_risk_reason": "No visit in 40 days",
                "days_since_last_visit": 40,
                "computed_at": NOW,
            }
        ]
    )
    monkeypatch.setattr(postgres, "fetch_all", fetch)

    snapshots = await store.latest_risk_snapshots("tenant-1")

    assert list(snapshots) == ["member-1"]
    assert snapshots["member-1"].risk_score == 72
    assert "DISTINCT ON (member_id)" in fetch.await_args.args[0]


@pytest.mark.asyncio
async def test_get_members_skips_query_for_empty_ids(store, monkeypatch):
    fetch = AsyncMock()
    monkeypatch.setattr(postgres, "fetch_all", fetch)

    assert await store.get_members("tenant-1", []) == {}
    fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_intervention_joins_member_and_play(store, monkeypatch):
    monkeypatch.setattr(
        postgres, "fetch_one", AsyncMock(side_effect=[INTERVENTION_ROW, MEMBER_ROW, PLAY_ROW])
    )

    detail = await store.get_intervention("int-1")

    assert detail.intervention.status == InterventionStatus.PENDING_APPROVAL
    assert detail.member.consent_sms is False
    assert detail.play.channels == [Channel.EMAIL, Channel.SMS]


@pytest.mark.asyncio
async def test_get_intervention_with_missing_play_returns_none(store, monkeypatch):
    monkeypatch.setattr(
        postgres, "fetch_one", AsyncMock(side_effect=[INTERVENTION_ROW, MEMBER_ROW, None])
    )

    assert await store.get_intervention("int-1") is None


@pytest.mark.asyncio
async def test_weekly_count_passes_status_names(store, monkeypatch):
    fetch = AsyncMock(return_value=3)
    monkeypatch.setattr(postgres, "fetch_val", fetch)

    count = await store.count_member_interventions_since(
        "tenant-1",
        "member-1",
        NOW,
        [InterventionStatus.SENT, InterventionStatus.FAILED],
    )

    assert count == 3
    query, params = fetch.await_args.args
    assert "COALESCE(sent_at, updated_at) >= %s" in query
    assert params == ("tenant-1", "member-1", ["SENT", "FAILED"], NOW)


@pytest.mark.asyncio
async def test_exists_since_defaults_to_no_exclusions(store, monkeypatch):
    fetch = AsyncMock(return_value=False)
    monkeypatch.setattr(postgres, "fetch_val", fetch)

    assert await store.exists_intervention_since("tenant-1", "play-1", "member-1", NOW) is False
    assert fetch.await_args.args[1][-1] == []


@pytest.mark.asyncio
async def test_append_message_event_wraps_payload(store, monkeypatch):
    fetch = AsyncMock(
        return_value={
            "id": "evt-1",
            "intervention_id": "int-1",
            "type": "SENT",
            "payload": {"provider_message_id": "pm-1"},
            "created_at": NOW,
        }
    )
    monkeypatch.setattr(postgres, "fetch_one", fetch)

    event = await store.append_message_event(
        "int-1", MessageEventType.SENT, {"provider_message_id": "pm-1"}
    )

    assert event.type == MessageEventType.SENT
    params = fetch.await_args.args[1]
    assert params[2] == "SENT"
    assert isinstance(params[3], postgres.Jsonb)


@pytest.mark.asyncio
async def test_insert_risk_snapshot(store, monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(postgres, "execute_query", execute)
    snapshot = RiskSnapshot(
        id="snap-2",
        tenant_id="tenant-1",
        member_id="member-1",
        risk_score=64,
        computed_at=NOW,
        primary_risk_reason="No visit in 21 days",
        days_since_last_visit=21,
    )

    stored = await store.insert_risk_snapshot(snapshot)

    assert stored is snapshot
    query, params = execute.await_args.args
    assert "INSERT INTO intervention_risk_snapshots" in query
    assert params == ("snap-2", "tenant-1", "member-1", 64, "No visit in 21 days", 21, NOW)


@pytest.mark.asyncio
async def test_list_member_activity_groups_visits(store, monkeypatch):
    fetch = AsyncMock(
        side_effect=[
            [
                {
                    "id": "member-1",
                    "tenant_id": "tenant-1",
                    "joined_date": date(2025, 1, 6),
                    "status": "active",
                    "distance_km": 4.5,
                    "age": 31,
                    "employment_status": None,
                    "student_status": None,
                    "has_received_campaign": None,
                    "expected_visits_per_week": 3,
                },
                {
                    "id": "member-2",
                    "tenant_id": "tenant-1",
                    "joined_date": date(2025, 6, 1),
                    "status": "inactive",
                },
            ],
            [
                {"member_id": "member-1", "visit_date": date(2026, 3, 1)},
                {"member_id": "member-1", "visit_date": date(2026, 3, 4)},
            ],
        ]
    )
    monkeypatch.setattr(postgres, "fetch_all", fetch)

    activities = await store.list_member_activity("tenant-1")

    assert [a.member_id for a in activities] == ["member-1", "member-2"]
    assert activities[0].visit_dates == [date(2026, 3, 1), date(2026, 3, 4)]
    assert activities[0].expected_visits_per_week == 3
    assert activities[0].has_received_campaign is False
    assert activities[1].visit_dates == []
    assert activities[1].status == "inactive"
    members_query, members_params = fetch.await_args_list[0].args
    assert "status = ANY(%s::text[])" in members_query
    assert members_params == ("tenant-1", ["active", "inactive"])
    visits_params = fetch.await_args_list[1].args[1]
    assert visits_params == ("tenant-1", ["member-1", "member-2"])


@pytest.mark.asyncio
async def test_list_member_activity_skips_visit_query_without_members(store, monkeypatch):
    fetch = AsyncMock(return_value=[])
    monkeypatch.setattr(postgres, "fetch_all", fetch)

    assert await store.list_member_activity("tenant-1") == []
    assert fetch.await_count == 1


@pytest.mark.asyncio
async def test_insert_play_returns_stored_row(store, monkeypatch):
    fetch = AsyncMock(return_value=PLAY_ROW)
    monkeypatch.setattr(postgres, "fetch_one", fetch)
    play = Play(
        id="play-1",
        tenant_id="tenant-1",
        name="Win back",
        template_body="Hi {{firstName}}",
        channels=[Channel.EMAIL, Channel.SMS],
        min_risk_score=50,
        requires_approval=True,
    )

    stored = await store.insert_play(play)

    assert stored.created_at == NOW
    query, params = fetch.await_args.args
    assert "INSERT INTO intervention_plays" in query
    assert "RETURNING *" in query
    assert params[7] == ["EMAIL", "SMS"]
    assert params[5] == "DAILY_BATCH"
