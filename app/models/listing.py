from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id

from app.models.base import Base, AuditMixin, UtcDateTime
from app.models.enums import ListingStatus


class Listing(AuditMixin, Base):
    """Authoritative listing record. The sync engine only moves it across the
    ONLINE/OFFLINE boundary and sets the resolved location."""

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))
    host_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus, native_enum=False, length=20), nullable=False, default=ListingStatus.DRAFT
    )

    # Geocoded place data captured at submission
    place_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    place_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    region_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    country_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)

    # Canonical location the listing is counted under while ONLINE
    location_id: Mapped[str | None] = mapped_column(String, ForeignKey("locations.id"), nullable=True, index=True)

    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    submitted_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    first_reviewed_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)


class ListingImage(AuditMixin, Base):
    __tablename__ = "listing_images"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("img"))
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, index=True)

    url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False)
    caption: Mapped[str | None] = mapped_column(String(500), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # processed and not deleted
    is_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
