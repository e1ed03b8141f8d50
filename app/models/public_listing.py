from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, AuditMixin


class PublicListing(AuditMixin, Base):
    """Read-optimized projection of an ONLINE listing, keyed by location then listing."""

    __tablename__ = "public_listings"

    location_id: Mapped[str] = mapped_column(String, ForeignKey("locations.id"), primary_key=True)
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), primary_key=True)
    host_id: Mapped[str] = mapped_column(String, nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    short_description: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    place_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    region_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False)
    instant_book: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PublicListingMedia(AuditMixin, Base):
    __tablename__ = "public_listing_media"

    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), primary_key=True)
    image_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=False)
    caption: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_cover_image: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
