from datetime import datetime

from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, AuditMixin, UtcDateTime
from app.models.enums import SubscriptionStatus


class HostSubscription(AuditMixin, Base):
    __tablename__ = "host_subscriptions"

    # one per host, never hard-deleted
    host_id: Mapped[str] = mapped_column(String, primary_key=True)

    plan_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    external_price_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # cached from SubscriptionPlan.max_listings
    max_listings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=20), nullable=False
    )

    started_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    current_period_start: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)  # current period end
    trial_ends_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    past_due_since: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

    external_customer_id: Mapped[str | None] = mapped_column(String(120), nullable=True, unique=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # event-time watermarks; older events must not overwrite newer state
    status_as_of: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    plan_as_of: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

    # bumped by every slot grant; publish does a compare-and-swap on it
    slot_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
