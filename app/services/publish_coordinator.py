"""
Publish / unpublish across the four stores: Listing, PublicListing(+media),
Location.listings_count and AdvertisingSlot.

Publish commits each step on its own and undoes the completed ones if a later
step fails. Unpublish is a single transaction. Drift left by a failed
compensation is corrected by reconciliation.reconcile_location_counts.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime
from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    EntitlementConflict,
    EntitlementDeclined,
    ListingNotFound,
    PreconditionFailed,
)
from app.models.advertising_slot import AdvertisingSlot
from app.models.base import utcnow
from app.models.enums import ListingStatus, LocationType
from app.models.listing import Listing, ListingImage
from app.models.location import Location, LocationName
from app.models.public_listing import PublicListing, PublicListingMedia
from app.repositories import listings as listings_repo
from app.repositories import locations as locations_repo
from app.repositories import subscriptions as subs_repo
from app.schemas.listing import PublishResult, UnpublishResult
from app.services import slot_lifecycle
from app.services.entitlements import check_entitlement, reserve_slot_capacity


log = logging.getLogger(__name__)

PUBLISHABLE = (ListingStatus.APPROVED, ListingStatus.OFFLINE)
SHORT_DESCRIPTION_LEN = 100


def slugify_location(name: str, country_code: str) -> str:
    """'Zlatibor', 'RS' -> 'zlatibor-rs'"""
    text = unicodedata.normalize("NFD", name.lower())
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = re.sub(r"[^a-z0-9\s-]", "", text)
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"-+", "-", text).strip("-")
    return f"{text}-{country_code.lower()}"


def search_name(name: str, region_name: str | None) -> str:
    return f"{name.lower()} {(region_name or '').lower()}".strip()


def short_description(description: str) -> str:
    if len(description) > SHORT_DESCRIPTION_LEN:
        return description[:SHORT_DESCRIPTION_LEN].strip() + "..."
    return description


def _check_publishable(listing: Listing, images: Sequence[ListingImage]) -> ListingImage:
    if listing.status not in PUBLISHABLE:
        raise PreconditionFailed(f"listing {listing.id} is {listing.status.value}; only approved or offline listings can be published")
    if not (listing.place_id and listing.place_name and listing.country_code):
        raise PreconditionFailed(f"listing {listing.id} has no resolved location")
    primary = next((img for img in images if img.is_primary), None)
    if primary is None:
        raise PreconditionFailed(f"listing {listing.id} must have a ready primary image")
    return primary


async def ensure_location(db: AsyncSession, listing: Listing) -> Location:
    """Canonical location for the listing's place, plus its name variant. Variants share the counter row."""
    location = await locations_repo.get_location(db, listing.place_id)
    if location is None:
        location = Location(
            id=listing.place_id,
            location_type=LocationType.PLACE,
            name=listing.place_name,
            region_name=listing.region_name,
            country_code=listing.country_code,
            slug=slugify_location(listing.place_name, listing.country_code),
            listings_count=0,
        )
        db.add(location)
        await db.flush()
        log.info("publish: created location %s (%s)", location.id, location.slug)

    if await locations_repo.get_name_variant(db, location.id, listing.place_name) is None:
        db.add(LocationName(
            location_id=location.id,
            name=listing.place_name,
            search_name=search_name(listing.place_name, listing.region_name),
        ))
        await db.flush()
    return location


async def _write_projection(
    db: AsyncSession,
    listing: Listing,
    location_id: str,
    images: Sequence[ListingImage],
    primary: ListingImage,
) -> None:
    await _delete_projection(db, listing.id)
    db.add(PublicListing(
        location_id=location_id,
        listing_id=listing.id,
        host_id=listing.host_id,
        name=listing.name,
        short_description=short_description(listing.description or ""),
        place_name=listing.place_name,
        region_name=listing.region_name,
        max_guests=listing.max_guests,
        bedrooms=listing.bedrooms,
        thumbnail_url=primary.thumbnail_url,
        instant_book=False,
    ))
    for index, image in enumerate(images):
        db.add(PublicListingMedia(
            listing_id=listing.id,
            image_index=index,
            url=image.url,
            thumbnail_url=image.thumbnail_url,
            caption=image.caption,
            is_cover_image=image.is_primary,
        ))
    await db.flush()


async def _delete_projection(db: AsyncSession, listing_id: str) -> None:
    await db.execute(
        delete(PublicListing)
        .where(PublicListing.listing_id == listing_id)
    )
    await db.execute(
        delete(PublicListingMedia)
        .where(PublicListingMedia.listing_id == listing_id)
    )


async def _compensate(
    db: AsyncSession,
    listing_id: str,
    location_id: str,
    created_slot_id: str | None,
) -> None:
    try:
        await _delete_projection(db, listing_id)
        if created_slot_id is not None:
            # never became visible; not kept as history
            await db.execute(
                delete(AdvertisingSlot)
                .where(AdvertisingSlot.id == created_slot_id)
            )
        await locations_repo.decrement_listings_count(db, location_id)
        await db.commit()
        log.warning("publish: compensated listing=%s location=%s slot=%s", listing_id, location_id, created_slot_id)
    except Exception:
        await db.rollback()
        log.exception(
            "publish: compensation failed for listing=%s location=%s; counter drift left for reconciliation",
            listing_id, location_id,
        )


async def _settle_lost_race(
    db: AsyncSession,
    listing: Listing,
    location_id: str,
    created_slot_id: str | None,
) -> PublishResult:
    """Another request moved the listing between our read and step 4."""
    if listing.status == ListingStatus.ONLINE:
        # the winner counted it and may be using our slot; only our increment is surplus
        await locations_repo.decrement_listings_count(db, location_id)
        await db.commit()
        log.info("publish: listing=%s went online concurrently; released extra count", listing.id)
        return PublishResult(outcome="already_online", listing_id=listing.id, location_id=listing.location_id)

    await _compensate(db, listing.id, location_id, created_slot_id)
    raise PreconditionFailed(f"listing {listing.id} became {listing.status.value} while publishing")


async def publish(
    db: AsyncSession,
    listing_id: str,
    now: datetime | None = None,
    *,
    retry_on_conflict: bool = True,
) -> PublishResult:
    now = now or utcnow()

    listing = await listings_repo.get_listing(db, listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)
    if listing.status == ListingStatus.ONLINE:
        return PublishResult(outcome="already_online", listing_id=listing_id, location_id=listing.location_id)

    host_id = listing.host_id
    images = await listings_repo.list_ready_images(db, listing_id)
    primary = _check_publishable(listing, images)

    # an OFFLINE listing may still hold a live slot (taken offline without releasing it)
    live_slot = await slot_lifecycle.live_slot_for_listing(db, listing_id)
    if live_slot is not None and live_slot.expires_at <= now:
        # past its date but not swept yet; it no longer carries capacity
        await slot_lifecycle.expire_slot(db, live_slot.id, now)
        await db.commit()
        live_slot = None
    entitlement = None
    if live_slot is None:
        try:
            entitlement = await check_entitlement(db, host_id)
        except EntitlementDeclined as e:
            log.info("publish: declined listing=%s host=%s reason=%s", listing_id, host_id, e.reason)
            return PublishResult(outcome="declined", listing_id=listing_id, reason=e.reason, message=e.message)

    # step 1: location + counter
    location = await ensure_location(db, listing)
    location_id = location.id
    await locations_repo.increment_listings_count(db, location_id)
    await db.commit()

    created_slot_id: str | None = None
    try:
        # step 2: slot
        if live_slot is None:
            await reserve_slot_capacity(db, host_id, entitlement.slot_version)
            subscription = await subs_repo.get_host_subscription(db, host_id)
            live_slot = await slot_lifecycle.create_slot(db, listing=listing, subscription=subscription, now=now)
            created_slot_id = live_slot.id
            await db.commit()
        slot_id, expires_at = live_slot.id, live_slot.expires_at

        # step 3: public projection
        await _write_projection(db, listing, location_id, images, primary)
        await db.commit()

        # step 4: listing, conditional so overlapping publishes count it once
        went_online = await listings_repo.transition_status(
            db, listing_id, PUBLISHABLE, ListingStatus.ONLINE, location_id=location_id,
        )
        await db.commit()
        await db.refresh(listing)
    except EntitlementConflict:
        await db.rollback()
        await _compensate(db, listing_id, location_id, created_slot_id)
        if retry_on_conflict:
            log.info("publish: capacity race for host=%s, retrying once", host_id)
            return await publish(db, listing_id, now, retry_on_conflict=False)
        return PublishResult(
            outcome="declined",
            listing_id=listing_id,
            reason="concurrent_publish",
            message="Another listing was published at the same time. Please try again.",
        )
    except Exception:
        await db.rollback()
        await _compensate(db, listing_id, location_id, created_slot_id)
        raise

    if not went_online:
        return await _settle_lost_race(db, listing, location_id, created_slot_id)

    log.info("publish: listing=%s online at location=%s slot=%s", listing_id, location_id, slot_id)
    return PublishResult(
        outcome="published",
        listing_id=listing_id,
        slot_id=slot_id,
        location_id=location_id,
        expires_at=expires_at,
    )


async def unpublish(
    db: AsyncSession,
    listing_id: str,
    now: datetime | None = None,
    *,
    release_slot: bool = True,
    commit: bool = True,
) -> UnpublishResult:
    """
    Take a listing offline. A listing that is not ONLINE is left untouched.

    release_slot expires the live slot too (host-initiated unpublish frees the
    capacity); the expiry sweep passes False because it expires the slot itself.
    """
    now = now or utcnow()
    listing = await listings_repo.get_listing(db, listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)
    if listing.status != ListingStatus.ONLINE:
        return UnpublishResult(outcome="not_online", listing_id=listing_id)

    # only the request that flips the row gets to decrement
    if not await listings_repo.transition_status(db, listing_id, (ListingStatus.ONLINE,), ListingStatus.OFFLINE):
        log.info("unpublish: listing=%s already taken offline concurrently", listing_id)
        return UnpublishResult(outcome="not_online", listing_id=listing_id)
    await db.refresh(listing)
    await _delete_projection(db, listing_id)
    if listing.location_id:
        if not await locations_repo.decrement_listings_count(db, listing.location_id):
            log.warning("unpublish: counter for location=%s already at zero", listing.location_id)

    released = False
    if release_slot:
        slot = await slot_lifecycle.live_slot_for_listing(db, listing_id)
        if slot is not None:
            released = await slot_lifecycle.expire_slot(db, slot.id, now)

    await db.flush()
    if commit:
        await db.commit()
    log.info("unpublish: listing=%s offline slot_released=%s", listing_id, released)
    return UnpublishResult(outcome="unpublished", listing_id=listing_id, slot_released=released)
