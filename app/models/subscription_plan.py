from sqlalchemy import Boolean, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, AuditMixin
from app.models.enums import BillingPeriod


class SubscriptionPlan(AuditMixin, Base):
    __tablename__ = "subscription_plans"

    plan_name: Mapped[str] = mapped_column(String(80), primary_key=True)  # e.g. "basic", "pro"
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # concurrent ad slots the plan permits
    max_listings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    billing_period: Mapped[BillingPeriod] = mapped_column(
        Enum(BillingPeriod, native_enum=False, length=20), nullable=False, default=BillingPeriod.MONTHLY
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PlanProduct(AuditMixin, Base):
    """Local read-cache of a provider catalog product."""

    __tablename__ = "plan_products"

    external_product_id: Mapped[str] = mapped_column(String(120), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # from product metadata; links the provider product to our plan
    plan_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PlanPrice(AuditMixin, Base):
    """Local read-cache of a provider catalog price."""

    __tablename__ = "plan_prices"

    external_price_id: Mapped[str] = mapped_column(String(120), primary_key=True)
    external_product_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    plan_name: Mapped[str | None] = mapped_column(String(80), nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="eur")
    billing_period: Mapped[BillingPeriod] = mapped_column(
        Enum(BillingPeriod, native_enum=False, length=20), nullable=False, default=BillingPeriod.MONTHLY
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
