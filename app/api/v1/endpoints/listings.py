from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.errors import ListingNotFound, PreconditionFailed
from app.models.advertising_slot import AdvertisingSlot
from app.schemas.listing import DoNotRenewIn, PublishResult, SlotOut, UnpublishResult
from app.services import publish_coordinator, slot_lifecycle

router = APIRouter()


def _slot_out(slot: AdvertisingSlot) -> SlotOut:
    return SlotOut(
        id=slot.id,
        listing_id=slot.listing_id,
        host_id=slot.host_id,
        status=slot.status.value,
        activated_at=slot.activated_at,
        expires_at=slot.expires_at,
        renewal_count=slot.renewal_count,
        is_past_due=slot.is_past_due,
    )


@router.post(
    "/listings/{listing_id}/publish",
    response_model=PublishResult,
    responses={409: {"model": PublishResult, "description": "Plan does not allow another published listing"}},
)
async def publish_listing(listing_id: str, db: AsyncSession = Depends(get_db)):
    try:
        result = await publish_coordinator.publish(db, listing_id)
    except ListingNotFound:
        raise HTTPException(status_code=404, detail="Listing not found")
    except PreconditionFailed as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result.outcome == "declined":
        return JSONResponse(status_code=409, content=result.model_dump(mode="json"))
    return result


@router.post("/listings/{listing_id}/unpublish", response_model=UnpublishResult)
async def unpublish_listing(listing_id: str, db: AsyncSession = Depends(get_db)) -> UnpublishResult:
    try:
        return await publish_coordinator.unpublish(db, listing_id)
    except ListingNotFound:
        raise HTTPException(status_code=404, detail="Listing not found")


@router.get("/listings/{listing_id}/slot", response_model=SlotOut)
async def get_listing_slot(listing_id: str, db: AsyncSession = Depends(get_db)) -> SlotOut:
    slot = await slot_lifecycle.live_slot_for_listing(db, listing_id)
    if slot is None:
        raise HTTPException(status_code=404, detail="No live advertising slot")
    return _slot_out(slot)


@router.put("/listings/{listing_id}/slot/do-not-renew", response_model=SlotOut)
async def set_slot_do_not_renew(
    listing_id: str,
    payload: DoNotRenewIn,
    db: AsyncSession = Depends(get_db),
) -> SlotOut:
    try:
        slot = await slot_lifecycle.set_do_not_renew(db, listing_id, payload.do_not_renew)
    except PreconditionFailed as e:
        raise HTTPException(status_code=404, detail=str(e))
    out = _slot_out(slot)
    await db.commit()
    return out
