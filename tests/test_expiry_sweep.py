from datetime import timedelta

from sqlalchemy import update

from app.models.advertising_slot import AdvertisingSlot
from app.models.enums import ListingStatus, SlotStatus
from app.models.host_subscription import HostSubscription
from app.models.listing import Listing
from app.repositories import locations as locations_repo
from app.schemas.sweep import SweepMode
from app.services import expiry_sweep, notifications, publish_coordinator, slot_lifecycle
from fixtures_seed import now_s, reload, seed_listing, seed_plan, seed_subscription


async def _publish(db, host_id, **listing_kwargs) -> tuple[str, str]:
    listing = await seed_listing(db, host_id, **listing_kwargs)
    await db.commit()
    result = await publish_coordinator.publish(db, listing.id)
    assert result.outcome == "published"
    return listing.id, result.slot_id


async def _set_expiry(db, slot_id, expires_at):
    await db.execute(update(AdvertisingSlot).where(AdvertisingSlot.id == slot_id).values(expires_at=expires_at))
    await db.commit()


async def test_warning_marks_slots_and_notifies_each_host_once(db, session_factory, notifier):
    now = now_s()
    await seed_plan(db, max_listings=3)
    host_a = await seed_subscription(db, max_listings=3)
    host_b = await seed_subscription(db, max_listings=3)
    await db.commit()

    a1 = await _publish(db, host_a.host_id)
    a2 = await _publish(db, host_a.host_id)
    a_far = await _publish(db, host_a.host_id)
    b1 = await _publish(db, host_b.host_id)
    for _, slot_id in (a1, a2, b1):
        await _set_expiry(db, slot_id, now + timedelta(days=3))
    await _set_expiry(db, a_far[1], now + timedelta(days=20))

    report = await expiry_sweep.run_sweep(session_factory, SweepMode.EXPIRY_WARNING, now)

    assert report.ok
    assert report.examined == 3
    assert report.transitioned == 3
    assert report.notified_hosts == 2
    for _, slot_id in (a1, a2, b1):
        assert (await reload(db, AdvertisingSlot, slot_id)).status == SlotStatus.EXPIRING_SOON
    assert (await reload(db, AdvertisingSlot, a_far[1])).status == SlotStatus.ACTIVE

    by_host = {host: variables for template, host, variables in notifier.sent}
    assert notifier.templates() == [notifications.ADS_EXPIRING_SOON] * 2
    assert by_host[host_a.host_id]["count"] == 2
    assert by_host[host_a.host_id]["listing_ids"] == sorted([a1[0], a2[0]])
    assert by_host[host_b.host_id]["count"] == 1

    # second run finds nothing new
    again = await expiry_sweep.run_expiry_warning(session_factory, now)
    assert again.transitioned == 0
    assert len(notifier.sent) == 2


async def test_expiry_unpublishes_and_notifies(db, session_factory, notifier):
    now = now_s()
    await seed_plan(db)
    sub = await seed_subscription(db)
    await db.commit()
    listing_id, slot_id = await _publish(db, sub.host_id)
    await _set_expiry(db, slot_id, now - timedelta(minutes=5))

    report = await expiry_sweep.run_expiry_step(session_factory, now)

    assert report.transitioned == 1
    assert report.unpublished == 1
    slot = await reload(db, AdvertisingSlot, slot_id)
    assert slot.status == SlotStatus.EXPIRED
    assert slot.expired_at == now
    assert (await reload(db, Listing, listing_id)).status == ListingStatus.OFFLINE
    assert await locations_repo.read_listings_count(db, "ChIJ-zlatibor") == 0
    assert notifier.templates() == [notifications.ADS_EXPIRED]

    # idempotent
    assert (await expiry_sweep.run_expiry_step(session_factory, now)).transitioned == 0


async def test_expiry_when_listing_already_offline(db, session_factory):
    now = now_s()
    await seed_plan(db)
    sub = await seed_subscription(db)
    await db.commit()
    listing_id, slot_id = await _publish(db, sub.host_id)
    await publish_coordinator.unpublish(db, listing_id, release_slot=False)
    await _set_expiry(db, slot_id, now - timedelta(hours=1))

    report = await expiry_sweep.run_expiry_step(session_factory, now)

    assert report.transitioned == 1
    assert report.unpublished == 0
    assert report.ok
    assert (await reload(db, AdvertisingSlot, slot_id)).status == SlotStatus.EXPIRED
    assert await locations_repo.read_listings_count(db, "ChIJ-zlatibor") == 0


async def test_do_not_renew_slot_expires_at_its_date(db, session_factory):
    now = now_s()
    await seed_plan(db)
    sub = await seed_subscription(db)
    await db.commit()
    listing_id, slot_id = await _publish(db, sub.host_id)
    await slot_lifecycle.set_do_not_renew(db, listing_id)
    await _set_expiry(db, slot_id, now - timedelta(minutes=1))

    await expiry_sweep.run_expiry_step(session_factory, now)

    assert (await reload(db, AdvertisingSlot, slot_id)).status == SlotStatus.EXPIRED


async def _past_due_host(db, since):
    await seed_plan(db)
    sub = await seed_subscription(db)
    await db.commit()
    listing_id, slot_id = await _publish(db, sub.host_id)
    await db.execute(update(HostSubscription).where(HostSubscription.host_id == sub.host_id).values(past_due_since=since))
    await db.execute(update(AdvertisingSlot).where(AdvertisingSlot.id == slot_id).values(is_past_due=True))
    await db.commit()
    return listing_id, slot_id


async def test_expired_slot_inside_grace_period_is_deferred(db, session_factory):
    now = now_s()
    listing_id, slot_id = await _past_due_host(db, now - timedelta(days=2))
    await _set_expiry(db, slot_id, now - timedelta(hours=1))

    report = await expiry_sweep.run_expiry_step(session_factory, now)

    assert report.deferred == 1
    assert report.transitioned == 0
    assert (await reload(db, AdvertisingSlot, slot_id)).status == SlotStatus.ACTIVE
    assert (await reload(db, Listing, listing_id)).status == ListingStatus.ONLINE


async def test_grace_period_exhausted_revokes_early(db, session_factory):
    now = now_s()
    listing_id, slot_id = await _past_due_host(db, now - timedelta(days=8))

    report = await expiry_sweep.run_expiry_step(session_factory, now)

    assert report.transitioned == 1
    assert report.unpublished == 1
    assert (await reload(db, AdvertisingSlot, slot_id)).status == SlotStatus.EXPIRED
    assert (await reload(db, Listing, listing_id)).status == ListingStatus.OFFLINE


async def test_one_failing_slot_does_not_abort_the_batch(db, session_factory, monkeypatch):
    now = now_s()
    await seed_plan(db)
    sub = await seed_subscription(db)
    await db.commit()
    bad = await _publish(db, sub.host_id)
    good = await _publish(db, sub.host_id)
    for _, slot_id in (bad, good):
        await _set_expiry(db, slot_id, now - timedelta(minutes=5))

    real = slot_lifecycle.expire_slot

    async def flaky(db, slot_id, now):
        if slot_id == bad[1]:
            raise RuntimeError("row locked")
        return await real(db, slot_id, now)

    monkeypatch.setattr(slot_lifecycle, "expire_slot", flaky)

    report = await expiry_sweep.run_expiry_step(session_factory, now)

    assert report.transitioned == 1
    assert [f.slot_id for f in report.failures] == [bad[1]]
    assert not report.ok
    assert (await reload(db, AdvertisingSlot, good[1])).status == SlotStatus.EXPIRED
    assert (await reload(db, AdvertisingSlot, bad[1])).status == SlotStatus.ACTIVE
