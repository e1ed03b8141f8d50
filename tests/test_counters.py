import asyncio

from hypothesis import HealthCheck, given, settings as hyp_settings, strategies as st
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.advertising_slot import AdvertisingSlot
from app.models.base import Base
from app.models.enums import LIVE_SLOT_STATUSES, ListingStatus
from app.models.listing import Listing
from app.repositories import locations as locations_repo
from app.services import publish_coordinator
from fixtures_seed import make_engine, seed_listing, seed_plan, seed_subscription

PLACES = [("ChIJ-a", "Zlatibor"), ("ChIJ-a", "Златибор"), ("ChIJ-b", "Kopaonik"), ("ChIJ-b", "Kopaonik")]
MAX_LISTINGS = 3

operations = st.lists(
    st.tuples(st.sampled_from(["publish", "unpublish", "hold"]), st.integers(0, len(PLACES) - 1)),
    max_size=20,
)


async def _check_invariants(db, host_id):
    for location_id in {p for p, _ in PLACES}:
        online = (await db.execute(
            select(func.count()).select_from(Listing)
            .where(Listing.location_id == location_id, Listing.status == ListingStatus.ONLINE)
        )).scalar_one()
        assert await locations_repo.read_listings_count(db, location_id) == online

    live = (await db.execute(
        select(AdvertisingSlot.listing_id)
        .where(AdvertisingSlot.host_id == host_id, AdvertisingSlot.status.in_(LIVE_SLOT_STATUSES))
    )).scalars().all()
    assert len(live) <= MAX_LISTINGS
    assert len(live) == len(set(live))

    online_ids = (await db.execute(
        select(Listing.id).where(Listing.host_id == host_id, Listing.status == ListingStatus.ONLINE)
    )).scalars().all()
    assert set(online_ids) <= set(live)


async def _run(ops):
    engine = make_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        async with Session() as db:
            await seed_plan(db, max_listings=MAX_LISTINGS)
            sub = await seed_subscription(db, max_listings=MAX_LISTINGS)
            listing_ids = []
            for place_id, place_name in PLACES:
                listing = await seed_listing(db, sub.host_id, place_id=place_id, place_name=place_name)
                listing_ids.append(listing.id)
            await db.commit()

            for op, i in ops:
                if op == "publish":
                    await publish_coordinator.publish(db, listing_ids[i])
                elif op == "unpublish":
                    await publish_coordinator.unpublish(db, listing_ids[i])
                else:
                    await publish_coordinator.unpublish(db, listing_ids[i], release_slot=False)
                await _check_invariants(db, sub.host_id)
    finally:
        await engine.dispose()


@hyp_settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(ops=operations)
def test_location_counters_follow_online_listings(ops):
    asyncio.run(_run(ops))
