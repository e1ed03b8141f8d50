from sqlalchemy import Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, AuditMixin
from app.models.enums import LocationType


class Location(AuditMixin, Base):
    """Canonical place. All name variants point here and share one counter."""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # provider place id
    location_type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, native_enum=False, length=20), nullable=False, default=LocationType.PLACE
    )
    parent_id: Mapped[str | None] = mapped_column(String, ForeignKey("locations.id"), nullable=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    region_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    slug: Mapped[str] = mapped_column(String(240), nullable=False, index=True)

    # ONLINE listings resolved to this location; only ever changed atomically
    listings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LocationName(AuditMixin, Base):
    __tablename__ = "location_names"
    __table_args__ = (
        UniqueConstraint("location_id", "name", name="uq_location_name_variant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[str] = mapped_column(String, ForeignKey("locations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    search_name: Mapped[str] = mapped_column(String(400), nullable=False, index=True)
