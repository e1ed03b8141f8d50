from datetime import timedelta

import pytest

from app.models.base import utcnow
from app.models.enums import InboundEventStatus
from app.models.inbound_event import InboundEvent
from app.services import event_queue
from app.services.retry import compute_backoff_seconds, next_visible_at, retries_exhausted
from fixtures_seed import reload


async def _enqueue(db, n=1):
    ids = []
    for i in range(n):
        row = await event_queue.enqueue_event(db, {"id": f"evt_{i}", "type": "invoice.paid", "data": {}})
        ids.append(row.id)
    await db.commit()
    return ids


async def test_enqueue_claim_ack(db):
    (inbox_id,) = await _enqueue(db)

    lease_id, ids = await event_queue.claim_batch(db)
    await db.commit()

    assert ids == [inbox_id]
    row = await reload(db, InboundEvent, inbox_id)
    assert row.status == InboundEventStatus.PROCESSING
    assert row.attempts == 1
    assert row.lease_id == lease_id

    # nothing else is visible while leased
    assert (await event_queue.claim_batch(db))[1] == []

    assert await event_queue.ack(db, inbox_id, lease_id) is True
    await db.commit()
    row = await reload(db, InboundEvent, inbox_id)
    assert row.status == InboundEventStatus.DONE
    assert row.lease_id is None
    assert row.processed_at is not None


async def test_enqueue_keeps_malformed_payload(db):
    row = await event_queue.enqueue_event(db, {"id": 42, "data": []})
    await db.commit()

    assert row.external_event_id is None
    assert row.event_type is None
    assert row.payload == {"id": 42, "data": []}


async def test_claim_respects_batch_size_and_order(db):
    ids = await _enqueue(db, 3)

    _, first = await event_queue.claim_batch(db, batch_size=2)
    _, rest = await event_queue.claim_batch(db, batch_size=2)

    assert len(first) == 2
    assert set(first) | set(rest) == set(ids)
    assert len(rest) == 1


async def test_nack_hides_the_row_until_backoff_elapses(db):
    (inbox_id,) = await _enqueue(db)
    lease_id, _ = await event_queue.claim_batch(db)

    status = await event_queue.nack(db, inbox_id, lease_id, "boom")
    await db.commit()

    assert status == InboundEventStatus.PENDING
    row = await reload(db, InboundEvent, inbox_id)
    assert row.last_error == "boom"
    assert row.visible_at > utcnow()
    assert (await event_queue.claim_batch(db))[1] == []

    later = row.visible_at + timedelta(seconds=1)
    _, ids = await event_queue.claim_batch(db, now=later)
    assert ids == [inbox_id]


async def test_nack_dead_letters_on_last_attempt(db, caplog):
    (inbox_id,) = await _enqueue(db)
    lease_id, _ = await event_queue.claim_batch(db)

    with caplog.at_level("CRITICAL", logger="app.alarms"):
        status = await event_queue.nack(db, inbox_id, lease_id, "boom", max_attempts=1)
    await db.commit()

    assert status == InboundEventStatus.DEAD_LETTERED
    row = await reload(db, InboundEvent, inbox_id)
    assert row.status == InboundEventStatus.DEAD_LETTERED
    assert row.dead_lettered_at is not None
    assert "after 1 attempts: boom" in row.last_error
    assert any(r.name == "app.alarms" for r in caplog.records)


async def test_expired_lease_is_reclaimed_and_old_holder_cannot_ack(db):
    (inbox_id,) = await _enqueue(db)
    now = utcnow()
    old_lease, _ = await event_queue.claim_batch(db, lease_seconds=30, now=now)
    await db.commit()

    later = now + timedelta(seconds=31)
    new_lease, ids = await event_queue.claim_batch(db, now=later)
    await db.commit()

    assert ids == [inbox_id]
    assert new_lease != old_lease
    assert (await reload(db, InboundEvent, inbox_id)).attempts == 2

    assert await event_queue.ack(db, inbox_id, old_lease) is False
    assert await event_queue.nack(db, inbox_id, old_lease, "late") is None
    assert await event_queue.ack(db, inbox_id, new_lease) is True


async def test_drop_records_reason(db):
    (inbox_id,) = await _enqueue(db)
    lease_id, _ = await event_queue.claim_batch(db)

    assert await event_queue.drop(db, inbox_id, lease_id, "unsupported event type") is True
    await db.commit()

    row = await reload(db, InboundEvent, inbox_id)
    assert row.status == InboundEventStatus.DROPPED
    assert row.last_error == "unsupported event type"


async def test_redrive_and_stats(db):
    a, b, c = await _enqueue(db, 3)
    lease_id, _ = await event_queue.claim_batch(db)
    await event_queue.dead_letter(db, a, lease_id, "x")
    await event_queue.dead_letter(db, b, lease_id, "y")
    await event_queue.ack(db, c, lease_id)
    await db.commit()

    stats = await event_queue.queue_stats(db)
    assert stats["dead_lettered"] == 2
    assert stats["done"] == 1
    assert stats["pending"] == 0

    assert await event_queue.redrive_dead_letters(db, [a]) == 1
    await db.commit()
    row = await reload(db, InboundEvent, a)
    assert row.status == InboundEventStatus.PENDING
    assert row.attempts == 0

    assert await event_queue.redrive_dead_letters(db) == 1
    await db.commit()
    assert (await event_queue.queue_stats(db))["pending"] == 2


@pytest.mark.parametrize("attempt", [1, 2, 5, 20])
def test_backoff_is_bounded(attempt):
    exp = min(900, 10 * 2 ** (attempt - 1))
    for _ in range(20):
        delay = compute_backoff_seconds(attempt)
        assert exp <= delay <= exp + min(30, exp // 3)


def test_next_visible_at_and_exhaustion():
    now = utcnow()
    assert next_visible_at(now, 1) >= now + timedelta(seconds=10)
    assert not retries_exhausted(2, 3)
    assert retries_exhausted(3, 3)
