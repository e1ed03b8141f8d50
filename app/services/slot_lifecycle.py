"""Advertising slot state machine.

    (none)   --publish-->           ACTIVE
    ACTIVE   --renew-->             ACTIVE          (expires_at extended)
    ACTIVE   --warn (T-7d)-->       EXPIRING_SOON
    EXPIRING_SOON --renew-->        ACTIVE
    ACTIVE | EXPIRING_SOON | DO_NOT_RENEW --expire--> EXPIRED
    ACTIVE | EXPIRING_SOON --do_not_renew--> DO_NOT_RENEW
    DO_NOT_RENEW --resume-->        ACTIVE
    EXPIRED  --publish-->           ACTIVE          (new slot row)

expires_at only ever moves forward; the only way "down" is EXPIRED.
"""
from __future__ import annotations

import calendar
import enum
import logging
import math
from datetime import datetime, time, timedelta, timezone
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InvariantViolation, PreconditionFailed
from app.models.advertising_slot import AdvertisingSlot
from app.models.enums import BillingPeriod, SlotStatus
from app.models.host_subscription import HostSubscription
from app.models.listing import Listing
from app.repositories import plans as plans_repo
from app.repositories import slots as slots_repo
from app.services.entitlements import get_plan_info


log = logging.getLogger(__name__)


class SlotAction(str, enum.Enum):
    PUBLISH = "publish"
    RENEW = "renew"
    WARN = "warn"
    EXPIRE = "expire"
    DO_NOT_RENEW = "do_not_renew"
    RESUME = "resume"


_TRANSITIONS: dict[tuple[SlotStatus | None, SlotAction], SlotStatus] = {
    (None, SlotAction.PUBLISH): SlotStatus.ACTIVE,
    (SlotStatus.EXPIRED, SlotAction.PUBLISH): SlotStatus.ACTIVE,
    (SlotStatus.ACTIVE, SlotAction.RENEW): SlotStatus.ACTIVE,
    (SlotStatus.EXPIRING_SOON, SlotAction.RENEW): SlotStatus.ACTIVE,
    (SlotStatus.ACTIVE, SlotAction.WARN): SlotStatus.EXPIRING_SOON,
    (SlotStatus.ACTIVE, SlotAction.EXPIRE): SlotStatus.EXPIRED,
    (SlotStatus.EXPIRING_SOON, SlotAction.EXPIRE): SlotStatus.EXPIRED,
    (SlotStatus.DO_NOT_RENEW, SlotAction.EXPIRE): SlotStatus.EXPIRED,
    (SlotStatus.ACTIVE, SlotAction.DO_NOT_RENEW): SlotStatus.DO_NOT_RENEW,
    (SlotStatus.EXPIRING_SOON, SlotAction.DO_NOT_RENEW): SlotStatus.DO_NOT_RENEW,
    (SlotStatus.DO_NOT_RENEW, SlotAction.RESUME): SlotStatus.ACTIVE,
}


def next_status(current: SlotStatus | None, action: SlotAction) -> SlotStatus | None:
    """Target status, or None when the action does not apply in this state."""
    return _TRANSITIONS.get((current, action))


# ---- date arithmetic --------------------------------------------------------

_PERIOD_MONTHS = {
    BillingPeriod.MONTHLY: 1,
    BillingPeriod.QUARTERLY: 3,
    BillingPeriod.SEMI_ANNUAL: 6,
    BillingPeriod.YEARLY: 12,
}


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's end (Jan 31 + 1 -> Feb 28/29)."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_billing_period(dt: datetime, period: BillingPeriod) -> datetime:
    return add_months(dt, _PERIOD_MONTHS.get(period, 1))


def end_of_day(dt: datetime) -> datetime:
    dt = dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return datetime.combine(dt.date(), time(23, 59, 59, 999999), tzinfo=timezone.utc)


def new_slot_expiry(created_at: datetime, period: BillingPeriod, compensation_days: int = 0) -> datetime:
    return end_of_day(add_billing_period(created_at, period) + timedelta(days=compensation_days))


def renewal_target(period_end: datetime, remaining_compensation_days: int = 0) -> datetime:
    return end_of_day(period_end + timedelta(days=remaining_compensation_days))


def review_compensation_days(submitted_at: datetime | None, reviewed_at: datetime | None) -> int:
    """Days a listing waited for its first review, capped."""
    if submitted_at is None or reviewed_at is None:
        return 0
    days = math.ceil((reviewed_at - submitted_at).total_seconds() / 86400)
    return min(max(0, days), settings.max_review_compensation_days)


def remaining_compensation_days(slot: AdvertisingSlot, now: datetime) -> int:
    # compensation burns down while the slot is active
    if not slot.review_compensation_days:
        return 0
    active_days = math.ceil((now - slot.activated_at).total_seconds() / 86400)
    return max(0, slot.review_compensation_days - active_days)


# ---- operations -------------------------------------------------------------

async def _lock_slot(db: AsyncSession, slot_id: str) -> AdvertisingSlot | None:
    stmt = (
        select(AdvertisingSlot)
        .where(AdvertisingSlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _billing_period_for(db: AsyncSession, sub: HostSubscription) -> BillingPeriod:
    if sub.external_price_id:
        price = await plans_repo.get_price(db, sub.external_price_id)
        if price is not None:
            return price.billing_period
    if sub.plan_name:
        plan = await get_plan_info(db, sub.plan_name)
        if plan is not None:
            return plan.billing_period
    return BillingPeriod.MONTHLY


async def create_slot(
    db: AsyncSession,
    *,
    listing: Listing,
    subscription: HostSubscription,
    now: datetime,
) -> AdvertisingSlot:
    """Grant a new ACTIVE slot. Caller has already passed the entitlement check."""
    if await slots_repo.get_live_slot_for_listing(db, listing.id) is not None:
        raise InvariantViolation(f"listing {listing.id} already holds a live slot")

    in_trial = subscription.trial_ends_at is not None and subscription.trial_ends_at > now
    if in_trial:
        # trial slots end with the trial; compensation starts once it converts
        compensation = 0
        expires_at = subscription.trial_ends_at
    else:
        compensation = 0
        if settings.review_compensation_enabled:
            compensation = review_compensation_days(listing.submitted_at, listing.first_reviewed_at)
        period = await _billing_period_for(db, subscription)
        expires_at = new_slot_expiry(now, period, compensation)

    slot = AdvertisingSlot(
        listing_id=listing.id,
        host_id=listing.host_id,
        status=next_status(None, SlotAction.PUBLISH),
        plan_name_at_creation=subscription.plan_name,
        activated_at=now,
        expires_at=expires_at,
        renewal_count=0,
        review_compensation_days=compensation,
        is_past_due=False,
    )
    db.add(slot)
    await db.flush()
    log.info(
        "slot: created %s listing=%s host=%s expires_at=%s compensation=%d",
        slot.id, listing.id, listing.host_id, expires_at.isoformat(), compensation,
    )
    return slot


def _extend(slot: AdvertisingSlot, period_end: datetime, now: datetime) -> bool:
    target = renewal_target(period_end, remaining_compensation_days(slot, now))
    if target <= slot.expires_at:
        return False
    slot.expires_at = target
    slot.renewal_count += 1
    slot.status = next_status(slot.status, SlotAction.RENEW) or slot.status
    slot.warned_at = None
    return True


async def extend_host_slots_to_period(
    db: AsyncSession,
    host_id: str,
    period_end: datetime,
    now: datetime,
) -> int:
    """
    Move every renewable live slot of the host to the paid period end.

    Extend-only: a slot already expiring at or after the target is left alone,
    so a duplicate or out-of-order renewal is a no-op. DO_NOT_RENEW slots are
    never extended. Returns the number of slots that moved.
    """
    moved = 0
    for slot in await slots_repo.list_host_slots(db, host_id):
        if next_status(slot.status, SlotAction.RENEW) is None:
            continue
        if _extend(slot, period_end, now):
            moved += 1
    if moved:
        await db.flush()
        log.info("slot: extended %d slots for host=%s to %s", moved, host_id, period_end.isoformat())
    return moved


async def renew_host_slots(
    db: AsyncSession,
    host_id: str,
    period_end: datetime,
    now: datetime,
) -> int:
    """Renewal after a successful payment: extend to the period end and lift any past-due flag."""
    await mark_host_slots_past_due(db, host_id, False)
    return await extend_host_slots_to_period(db, host_id, period_end, now)


async def mark_host_slots_past_due(db: AsyncSession, host_id: str, past_due: bool) -> int:
    changed = 0
    for slot in await slots_repo.list_host_slots(db, host_id):
        if slot.is_past_due != past_due:
            slot.is_past_due = past_due
            changed += 1
    if changed:
        await db.flush()
        log.info("slot: is_past_due=%s on %d slots for host=%s", past_due, changed, host_id)
    return changed


async def mark_expiring_soon(db: AsyncSession, slot_id: str, now: datetime) -> bool:
    """ACTIVE -> EXPIRING_SOON. False if the slot moved on (renewed, expired) meanwhile."""
    slot = await _lock_slot(db, slot_id)
    if slot is None:
        return False
    target = next_status(slot.status, SlotAction.WARN)
    if target is None:
        return False
    slot.status = target
    slot.warned_at = now
    await db.flush()
    return True


async def expire_slot(db: AsyncSession, slot_id: str, now: datetime) -> bool:
    """Live -> EXPIRED. Idempotent: an already EXPIRED slot returns False."""
    slot = await _lock_slot(db, slot_id)
    if slot is None:
        return False
    target = next_status(slot.status, SlotAction.EXPIRE)
    if target is None:
        return False
    slot.status = target
    slot.expired_at = now
    await db.flush()
    log.info("slot: expired %s listing=%s host=%s", slot.id, slot.listing_id, slot.host_id)
    return True


async def set_do_not_renew(db: AsyncSession, listing_id: str, do_not_renew: bool = True) -> AdvertisingSlot:
    """Host opts a listing's slot out of (or back into) renewal."""
    slot = await slots_repo.get_live_slot_for_listing(db, listing_id)
    if slot is None:
        raise PreconditionFailed(f"listing {listing_id} has no live advertising slot")

    slot = await _lock_slot(db, slot.id)
    action = SlotAction.DO_NOT_RENEW if do_not_renew else SlotAction.RESUME
    target = next_status(slot.status, action)
    if target is None:
        # already in the requested state
        return slot
    slot.status = target
    await db.flush()
    log.info("slot: %s %s listing=%s", action.value, slot.id, listing_id)
    return slot


async def live_slot_for_listing(db: AsyncSession, listing_id: str) -> AdvertisingSlot | None:
    return await slots_repo.get_live_slot_for_listing(db, listing_id)


async def count_live_slots(db: AsyncSession, host_id: str) -> int:
    return await slots_repo.count_live_slots(db, host_id)


async def host_slots(db: AsyncSession, host_id: str) -> Sequence[AdvertisingSlot]:
    return await slots_repo.list_host_slots(db, host_id, live_only=False)
