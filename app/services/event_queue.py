"""Durable inbox between the payment provider and the event processor.

Rows move pending -> processing (leased) -> done | dropped | dead_lettered, or back
to pending with a backoff delay on nack. A lease acts as the visibility timeout: a
worker that dies mid-message leaves a lease that expires and is reclaimed by the
next claim.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.base import utcnow
from app.models.enums import InboundEventStatus
from app.models.inbound_event import InboundEvent
from app.services.retry import next_visible_at, retries_exhausted


log = logging.getLogger(__name__)
alarm_log = logging.getLogger("app.alarms")


async def enqueue_event(db: AsyncSession, raw: dict[str, Any]) -> InboundEvent:
    """Buffer one delivery. Duplicates are accepted; the ledger absorbs them."""
    row = InboundEvent(
        external_event_id=raw.get("id") if isinstance(raw.get("id"), str) else None,
        event_type=raw.get("type") if isinstance(raw.get("type"), str) else None,
        payload=raw,
        status=InboundEventStatus.PENDING,
        attempts=0,
    )
    db.add(row)
    await db.flush()
    return row


async def get_event(db: AsyncSession, inbox_id: str) -> InboundEvent | None:
    return (await db.execute(select(InboundEvent).where(InboundEvent.id == inbox_id))).scalar_one_or_none()


async def reclaim_expired_leases(db: AsyncSession, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = await db.execute(
        update(InboundEvent)
        .where(
            InboundEvent.status == InboundEventStatus.PROCESSING,
            InboundEvent.lease_expires_at.is_not(None),
            InboundEvent.lease_expires_at < now,
        )
        .values(
            status=InboundEventStatus.PENDING,
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
            visible_at=now,
            last_error="requeued: lease expired",
        )
        .execution_options(synchronize_session=False)
    )
    n = int(result.rowcount or 0)
    if n:
        log.warning("event_queue: reclaimed %d expired leases", n)
    return n


async def claim_batch(
    db: AsyncSession,
    batch_size: int | None = None,
    lease_seconds: int | None = None,
    now: datetime | None = None,
) -> tuple[str, list[str]]:
    """
    Lease up to batch_size visible pending rows.

    Returns (lease_id, inbox ids). Caller commits before handing ids to workers.
    """
    now = now or utcnow()
    batch_size = batch_size or settings.dispatcher_batch_size
    lease_seconds = lease_seconds or settings.event_lease_seconds

    await reclaim_expired_leases(db, now)

    lease_id = uuid.uuid4().hex
    stmt = (
        select(InboundEvent.id)
        .where(
            InboundEvent.status == InboundEventStatus.PENDING,
            InboundEvent.visible_at <= now,
        )
        .order_by(InboundEvent.visible_at.asc(), InboundEvent.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return lease_id, []

    await db.execute(
        update(InboundEvent)
        .where(InboundEvent.id.in_(ids))
        .values(
            status=InboundEventStatus.PROCESSING,
            processing_started_at=now,
            attempts=InboundEvent.attempts + 1,
            lease_id=lease_id,
            lease_expires_at=now + timedelta(seconds=lease_seconds),
        )
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return lease_id, ids


def _owned(inbox_id: str, lease_id: str):
    return (
        InboundEvent.id == inbox_id,
        InboundEvent.lease_id == lease_id,
        InboundEvent.status == InboundEventStatus.PROCESSING,
    )


async def ack(db: AsyncSession, inbox_id: str, lease_id: str) -> bool:
    """Mark done only if the lease still matches. False => lease lost, do not overwrite."""
    result = await db.execute(
        update(InboundEvent)
        .where(*_owned(inbox_id, lease_id))
        .values(
            status=InboundEventStatus.DONE,
            processed_at=utcnow(),
            lease_id=None,
            lease_expires_at=None,
            last_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def drop(db: AsyncSession, inbox_id: str, lease_id: str, reason: str) -> bool:
    result = await db.execute(
        update(InboundEvent)
        .where(*_owned(inbox_id, lease_id))
        .values(
            status=InboundEventStatus.DROPPED,
            processed_at=utcnow(),
            lease_id=None,
            lease_expires_at=None,
            last_error=reason[:2000],
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        log.warning("event_queue: dropped %s: %s", inbox_id, reason)
    return bool(result.rowcount)


async def dead_letter(db: AsyncSession, inbox_id: str, lease_id: str, error: str) -> bool:
    now = utcnow()
    result = await db.execute(
        update(InboundEvent)
        .where(*_owned(inbox_id, lease_id))
        .values(
            status=InboundEventStatus.DEAD_LETTERED,
            dead_lettered_at=now,
            lease_id=None,
            lease_expires_at=None,
            last_error=error[:2000],
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        alarm_log.critical("billing event %s dead-lettered: %s", inbox_id, error)
    return bool(result.rowcount)


async def nack(
    db: AsyncSession,
    inbox_id: str,
    lease_id: str,
    error: str,
    max_attempts: int | None = None,
) -> InboundEventStatus | None:
    """
    Return a failed message to the queue after a backoff delay, or dead-letter it
    once its attempts are used up.

    Returns the resulting status, or None if the lease was lost.
    """
    max_attempts = max_attempts or settings.event_max_attempts
    attempts = (await db.execute(
        select(InboundEvent.attempts).where(*_owned(inbox_id, lease_id))
    )).scalar_one_or_none()
    if attempts is None:
        return None

    if retries_exhausted(attempts, max_attempts):
        ok = await dead_letter(db, inbox_id, lease_id, f"after {attempts} attempts: {error}")
        return InboundEventStatus.DEAD_LETTERED if ok else None

    now = utcnow()
    result = await db.execute(
        update(InboundEvent)
        .where(*_owned(inbox_id, lease_id))
        .values(
            status=InboundEventStatus.PENDING,
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
            visible_at=next_visible_at(now, attempts),
            last_error=error[:2000],
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    log.info("event_queue: nack %s attempt=%d: %s", inbox_id, attempts, error)
    return InboundEventStatus.PENDING


async def redrive_dead_letters(db: AsyncSession, ids: Sequence[str] | None = None) -> int:
    """Operator action: move dead-lettered rows back to pending with a fresh attempt budget."""
    stmt = update(InboundEvent).where(InboundEvent.status == InboundEventStatus.DEAD_LETTERED)
    if ids:
        stmt = stmt.where(InboundEvent.id.in_(list(ids)))
    result = await db.execute(
        stmt.values(
            status=InboundEventStatus.PENDING,
            attempts=0,
            visible_at=utcnow(),
            dead_lettered_at=None,
        ).execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def queue_stats(db: AsyncSession) -> dict[str, int]:
    rows = (await db.execute(
        select(InboundEvent.status, func.count()).group_by(InboundEvent.status)
    )).all()
    out = {s.value: 0 for s in InboundEventStatus}
    for status, n in rows:
        out[InboundEventStatus(status).value] = int(n)
    return out
