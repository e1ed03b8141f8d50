"""Named queries over advertising_slots (by listing, by host, by expiry)."""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvariantViolation
from app.models.advertising_slot import AdvertisingSlot
from app.models.enums import LIVE_SLOT_STATUSES, SlotStatus


async def get_slot(db: AsyncSession, slot_id: str) -> AdvertisingSlot | None:
    return (await db.execute(select(AdvertisingSlot).where(AdvertisingSlot.id == slot_id))).scalar_one_or_none()


async def get_live_slot_for_listing(db: AsyncSession, listing_id: str) -> AdvertisingSlot | None:
    rows = (await db.execute(
        select(AdvertisingSlot).where(
            AdvertisingSlot.listing_id == listing_id,
            AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES),
        )
    )).scalars().all()
    if len(rows) > 1:
        raise InvariantViolation(f"listing {listing_id} has {len(rows)} live advertising slots")
    return rows[0] if rows else None


async def list_slots_for_listing(db: AsyncSession, listing_id: str) -> Sequence[AdvertisingSlot]:
    stmt = (
        select(AdvertisingSlot)
        .where(AdvertisingSlot.listing_id == listing_id)
        .order_by(AdvertisingSlot.activated_at.asc())
    )
    return (await db.execute(stmt)).scalars().all()


async def list_host_slots(db: AsyncSession, host_id: str, *, live_only: bool = True) -> Sequence[AdvertisingSlot]:
    stmt = select(AdvertisingSlot).where(AdvertisingSlot.host_id == host_id)
    if live_only:
        stmt = stmt.where(AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES))
    return (await db.execute(stmt.order_by(AdvertisingSlot.activated_at.asc()))).scalars().all()


async def count_live_slots(db: AsyncSession, host_id: str) -> int:
    stmt = select(func.count()).select_from(AdvertisingSlot).where(
        AdvertisingSlot.host_id == host_id,
        AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES),
    )
    return int((await db.execute(stmt)).scalar_one())


async def list_slots_expiring_between(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    *,
    statuses: Sequence[SlotStatus] = (SlotStatus.ACTIVE,),
) -> Sequence[AdvertisingSlot]:
    """Slots with start < expires_at <= end, in expiry order."""
    stmt = (
        select(AdvertisingSlot)
        .where(
            AdvertisingSlot.status.in_(statuses),
            AdvertisingSlot.expires_at > start,
            AdvertisingSlot.expires_at <= end,
        )
        .order_by(AdvertisingSlot.expires_at.asc(), AdvertisingSlot.listing_id.asc(), AdvertisingSlot.id.asc())
    )
    return (await db.execute(stmt)).scalars().all()


async def list_expired_slots(db: AsyncSession, now: datetime) -> Sequence[AdvertisingSlot]:
    """Live slots whose expires_at has passed, in expiry order."""
    stmt = (
        select(AdvertisingSlot)
        .where(
            AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES),
            AdvertisingSlot.expires_at <= now,
        )
        .order_by(AdvertisingSlot.expires_at.asc(), AdvertisingSlot.listing_id.asc(), AdvertisingSlot.id.asc())
    )
    return (await db.execute(stmt)).scalars().all()


async def list_past_due_slots(db: AsyncSession) -> Sequence[AdvertisingSlot]:
    stmt = select(AdvertisingSlot).where(
        AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES),
        AdvertisingSlot.is_past_due.is_(True),
    )
    return (await db.execute(stmt)).scalars().all()
