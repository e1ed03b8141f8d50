from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ListingStatus
from app.models.listing import Listing
from app.models.location import Location, LocationName


async def get_location(db: AsyncSession, location_id: str) -> Location | None:
    return (await db.execute(select(Location).where(Location.id == location_id))).scalar_one_or_none()


async def get_name_variant(db: AsyncSession, location_id: str, name: str) -> LocationName | None:
    return (await db.execute(
        select(LocationName).where(LocationName.location_id == location_id, LocationName.name == name)
    )).scalar_one_or_none()


async def increment_listings_count(db: AsyncSession, location_id: str) -> int:
    """Atomic +1; returns rows touched (0 if the location does not exist)."""
    result = await db.execute(
        update(Location)
        .where(Location.id == location_id)
        .values(listings_count=Location.listings_count + 1)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def decrement_listings_count(db: AsyncSession, location_id: str) -> int:
    """Atomic -1, never below zero; returns rows touched."""
    result = await db.execute(
        update(Location)
        .where(Location.id == location_id, Location.listings_count > 0)
        .values(listings_count=Location.listings_count - 1)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def read_listings_count(db: AsyncSession, location_id: str) -> int:
    value = (await db.execute(
        select(Location.listings_count).where(Location.id == location_id)
    )).scalar_one_or_none()
    return int(value or 0)


async def online_counts_by_location(db: AsyncSession) -> dict[str, int]:
    stmt = (
        select(Listing.location_id, func.count())
        .where(Listing.status == ListingStatus.ONLINE, Listing.location_id.is_not(None))
        .group_by(Listing.location_id)
    )
    return {location_id: int(n) for location_id, n in (await db.execute(stmt)).all()}
