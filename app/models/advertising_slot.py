from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id

from app.models.base import Base, AuditMixin, UtcDateTime
from app.models.enums import LIVE_SLOT_STATUSES, SlotStatus


_LIVE = text("status IN ({})".format(", ".join(f"'{s.value}'" for s in LIVE_SLOT_STATUSES)))


class AdvertisingSlot(AuditMixin, Base):
    __tablename__ = "advertising_slots"
    __table_args__ = (
        # at most one live slot per listing
        Index(
            "uq_advertising_slots_live_listing",
            "listing_id",
            unique=True,
            postgresql_where=_LIVE,
            sqlite_where=_LIVE,
        ),
        Index("ix_advertising_slots_host_activated", "host_id", "activated_at"),
        Index("ix_advertising_slots_expiry", "expires_at", "listing_id", "id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("slt"))

    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[SlotStatus] = mapped_column(
        Enum(SlotStatus, native_enum=False, length=20), nullable=False, default=SlotStatus.ACTIVE
    )
    plan_name_at_creation: Mapped[str | None] = mapped_column(String(80), nullable=True)  # audit

    activated_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    renewal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # extra days granted for time spent in admin review (0..60)
    review_compensation_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # payment failed; slot stays visible during the grace period
    is_past_due: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    warned_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SLOT_STATUSES
