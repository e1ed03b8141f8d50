from __future__ import annotations

from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import ListingStatus
from app.models.listing import Listing, ListingImage


async def get_listing(db: AsyncSession, listing_id: str) -> Listing | None:
    return (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()


async def list_ready_images(db: AsyncSession, listing_id: str) -> Sequence[ListingImage]:
    stmt = (
        select(ListingImage)
        .where(ListingImage.listing_id == listing_id, ListingImage.is_ready.is_(True))
        .order_by(ListingImage.display_order.asc(), ListingImage.id.asc())
    )
    return (await db.execute(stmt)).scalars().all()


async def transition_status(
    db: AsyncSession,
    listing_id: str,
    from_statuses: Sequence[ListingStatus],
    to_status: ListingStatus,
    **values,
) -> bool:
    """Conditional status flip; False when another request moved the listing first."""
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.status.in_(from_statuses))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
