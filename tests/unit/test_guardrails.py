from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from retention.features.interventions.domain import (
    Channel,
    Intervention,
    InterventionStatus,
)
from retention.features.interventions.guardrails import GuardrailEvaluator

LONDON = "Europe/London"


@pytest.fixture
def evaluator(store):
    return GuardrailEvaluator(store)


async def _seed_intervention(store, clock, play, member, status, sent_at=None, intervention_id=None):
    intervention = await store.insert_intervention(
        Intervention(
            id=intervention_id or f"int-{len(store.interventions) + 1}",
            tenant_id="tenant-1",
            play_id=play.id,
            member_id=member.id,
            channel=Channel.EMAIL,
            status=status,
            rendered_body="Hi",
            sent_at=sent_at,
        )
    )
    return intervention


@pytest.mark.asyncio
async def test_do_not_contact_denies_first(store, evaluator, clock):
    member = store.add_member(do_not_contact=True, consent_email=False)
    play = store.add_play()

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert not result.allowed
    assert result.reason == "Member has doNotContact"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("channel", "reason"),
    [
        (Channel.EMAIL, "No email consent"),
        (Channel.SMS, "No SMS consent"),
        (Channel.WHATSAPP, "No WhatsApp consent"),
    ],
)
async def test_missing_consent_denies(store, evaluator, clock, channel, reason):
    member = store.add_member(consent_email=False)
    play = store.add_play(channels=[channel])

    result = await evaluator.evaluate("tenant-1", member, play, channel, LONDON, clock())

    assert not result.allowed
    assert result.reason == reason


@pytest.mark.asyncio
async def test_outside_quiet_hours_allows_immediate_send(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play()

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert result.allowed
    assert result.scheduled_at is None
    assert result.reason is None


@pytest.mark.asyncio
async def test_quiet_hours_defers_to_local_window_end(store, evaluator):
    member = store.add_member()
    play = store.add_play(quiet_hours_start="21:00", quiet_hours_end="08:00")
    tz = ZoneInfo("America/New_York")
    now = datetime(2026, 1, 15, 23, 0, tzinfo=tz).astimezone(UTC)

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, "America/New_York", now)

    assert result.allowed
    assert result.scheduled_at is not None
    local = result.scheduled_at.astimezone(tz)
    target = datetime(2026, 1, 16, 8, 0, tzinfo=tz)
    assert abs(local - target) <= timedelta(minutes=1)


@pytest.mark.asyncio
async def test_weekly_cap_denies_the_cap_plus_one_send(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(max_messages_per_member_per_week=2, cooldown_days=0)
    other_play = store.add_play(play_id="play-2")

    for _ in range(2):
        result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
        assert result.allowed
        await _seed_intervention(
            store, clock, other_play, member, InterventionStatus.SENT, sent_at=clock()
        )
        clock.advance(hours=1)

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert not result.allowed
    assert result.reason == "Weekly cap reached (2/2)"


@pytest.mark.asyncio
async def test_weekly_cap_counts_failed_but_not_pending(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(max_messages_per_member_per_week=1)
    other_play = store.add_play(play_id="play-2")

    await _seed_intervention(store, clock, other_play, member, InterventionStatus.PENDING_APPROVAL)
    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
    assert result.allowed

    await _seed_intervention(store, clock, other_play, member, InterventionStatus.FAILED)
    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
    assert not result.allowed


@pytest.mark.asyncio
async def test_weekly_cap_ignores_sends_older_than_seven_days(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(max_messages_per_member_per_week=1)
    other_play = store.add_play(play_id="play-2")
    await _seed_intervention(
        store, clock, other_play, member, InterventionStatus.SENT, sent_at=clock()
    )

    clock.advance(days=7, minutes=1)
    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert result.allowed


@pytest.mark.asyncio
async def test_cooldown_window(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(cooldown_days=3, max_messages_per_member_per_week=10)

    first = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
    assert first.allowed
    await _seed_intervention(store, clock, play, member, InterventionStatus.SCHEDULED)

    clock.advance(days=2)
    second = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
    assert not second.allowed
    assert second.reason.startswith("Cooldown active")

    clock.advance(days=2)  # cooldown_days + 1 after creation
    third = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())
    assert third.allowed


@pytest.mark.asyncio
async def test_canceled_interventions_do_not_trigger_cooldown(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(cooldown_days=3)
    await _seed_intervention(store, clock, play, member, InterventionStatus.CANCELED)

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert result.allowed


@pytest.mark.asyncio
async def test_cooldown_is_per_play(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(cooldown_days=3)
    other_play = store.add_play(play_id="play-2")
    await _seed_intervention(store, clock, other_play, member, InterventionStatus.PENDING_APPROVAL)

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, clock())

    assert result.allowed


@pytest.mark.asyncio
async def test_quiet_hours_still_respect_cooldown(store, evaluator, clock):
    member = store.add_member()
    play = store.add_play(cooldown_days=3)
    await _seed_intervention(store, clock, play, member, InterventionStatus.SCHEDULED)
    late = datetime(2026, 3, 10, 22, 30, tzinfo=UTC)

    result = await evaluator.evaluate("tenant-1", member, play, Channel.EMAIL, LONDON, late)

    assert not result.allowed
    assert result.reason.startswith("Cooldown active")
