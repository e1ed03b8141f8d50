"""Daily slot sweeps.

EXPIRY_WARNING: ACTIVE slots expiring within the warning window become
EXPIRING_SOON; one notification per host.

SLOT_EXPIRY: live slots past expires_at become EXPIRED and their listing is
unpublished. Slots flagged past-due are held while the host is inside the
payment grace period and revoked early once it has run out.

Each slot runs in its own session and transaction; a failing slot is reported
and the rest of the batch carries on.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.advertising_slot import AdvertisingSlot
from app.models.base import utcnow
from app.models.enums import SlotStatus
from app.models.host_subscription import HostSubscription
from app.repositories import slots as slots_repo
from app.schemas.sweep import SweepFailure, SweepMode, SweepReport
from app.services import notifications, publish_coordinator, slot_lifecycle


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Candidate:
    slot_id: str
    listing_id: str
    host_id: str


def _candidates(slots: Iterable[AdvertisingSlot]) -> list[_Candidate]:
    return [_Candidate(s.id, s.listing_id, s.host_id) for s in slots]


async def _run_bounded(
    items: list[_Candidate],
    work: Callable[[_Candidate], Awaitable[bool]],
    report: SweepReport,
) -> list[_Candidate]:
    """Run work per item with bounded parallelism; returns the items that transitioned."""
    sem = asyncio.Semaphore(max(1, settings.sweep_concurrency))
    done: list[_Candidate] = []

    async def one(item: _Candidate) -> None:
        async with sem:
            try:
                if await work(item):
                    done.append(item)
            except Exception as e:
                log.exception("sweep: slot %s failed", item.slot_id)
                report.failures.append(SweepFailure(slot_id=item.slot_id, error=f"{type(e).__name__}: {e}"))

    await asyncio.gather(*(one(item) for item in items))
    return done


async def _notify_hosts(template: str, items: list[_Candidate]) -> int:
    by_host: dict[str, list[str]] = defaultdict(list)
    for item in items:
        by_host[item.host_id].append(item.listing_id)
    for host_id, listing_ids in by_host.items():
        await notifications.notify(template, host_id, {"count": len(listing_ids), "listing_ids": sorted(listing_ids)})
    return len(by_host)


async def run_expiry_warning(Session: async_sessionmaker[AsyncSession], now: datetime | None = None) -> SweepReport:
    now = now or utcnow()
    report = SweepReport(mode=SweepMode.EXPIRY_WARNING)

    async with Session() as db:
        window_end = now + timedelta(days=settings.expiry_warning_days)
        items = _candidates(await slots_repo.list_slots_expiring_between(
            db, now, window_end, statuses=(SlotStatus.ACTIVE,),
        ))
    report.examined = len(items)

    async def warn(item: _Candidate) -> bool:
        async with Session() as db:
            changed = await slot_lifecycle.mark_expiring_soon(db, item.slot_id, now)
            await db.commit()
            return changed

    warned = await _run_bounded(items, warn, report)
    report.transitioned = len(warned)
    report.notified_hosts = await _notify_hosts(notifications.ADS_EXPIRING_SOON, warned)
    log.info(
        "sweep[warning]: examined=%d warned=%d hosts=%d failures=%d",
        report.examined, report.transitioned, report.notified_hosts, len(report.failures),
    )
    return report


async def _past_due_since_by_host(db: AsyncSession, host_ids: set[str]) -> dict[str, datetime | None]:
    if not host_ids:
        return {}
    rows = (await db.execute(
        select(HostSubscription.host_id, HostSubscription.past_due_since)
        .where(HostSubscription.host_id.in_(host_ids))
    )).all()
    return {host_id: since for host_id, since in rows}


async def run_expiry_step(Session: async_sessionmaker[AsyncSession], now: datetime | None = None) -> SweepReport:
    now = now or utcnow()
    report = SweepReport(mode=SweepMode.SLOT_EXPIRY)
    grace = timedelta(days=settings.payment_grace_days)

    async with Session() as db:
        due = list(await slots_repo.list_expired_slots(db, now))
        past_due = list(await slots_repo.list_past_due_slots(db))
        since = await _past_due_since_by_host(db, {s.host_id for s in due + past_due if s.is_past_due})

        def grace_running(slot: AdvertisingSlot) -> bool:
            started = since.get(slot.host_id)
            return slot.is_past_due and started is not None and now < started + grace

        def grace_exhausted(slot: AdvertisingSlot) -> bool:
            started = since.get(slot.host_id)
            return started is not None and now >= started + grace

        items: list[_Candidate] = []
        seen: set[str] = set()
        for slot in due:
            if grace_running(slot):
                report.deferred += 1
                continue
            items.append(_Candidate(slot.id, slot.listing_id, slot.host_id))
            seen.add(slot.id)
        for slot in past_due:
            if slot.id not in seen and grace_exhausted(slot):
                items.append(_Candidate(slot.id, slot.listing_id, slot.host_id))
    report.examined = len(items) + report.deferred

    unpublished = 0

    async def expire(item: _Candidate) -> bool:
        nonlocal unpublished
        async with Session() as db:
            changed = await slot_lifecycle.expire_slot(db, item.slot_id, now)
            if changed:
                result = await publish_coordinator.unpublish(
                    db, item.listing_id, now, release_slot=False, commit=False,
                )
                if result.outcome == "unpublished":
                    unpublished += 1
            await db.commit()
            return changed

    expired = await _run_bounded(items, expire, report)
    report.transitioned = len(expired)
    report.unpublished = unpublished
    report.notified_hosts = await _notify_hosts(notifications.ADS_EXPIRED, expired)
    log.info(
        "sweep[expiry]: examined=%d expired=%d unpublished=%d deferred=%d failures=%d",
        report.examined, report.transitioned, report.unpublished, report.deferred, len(report.failures),
    )
    return report


async def run_sweep(Session: async_sessionmaker[AsyncSession], mode: SweepMode | str, now: datetime | None = None) -> SweepReport:
    mode = SweepMode(mode)
    if mode == SweepMode.EXPIRY_WARNING:
        return await run_expiry_warning(Session, now)
    return await run_expiry_step(Session, now)
