from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription_plan import PlanPrice, PlanProduct, SubscriptionPlan


async def get_plan(db: AsyncSession, plan_name: str) -> SubscriptionPlan | None:
    return (await db.execute(
        select(SubscriptionPlan).where(SubscriptionPlan.plan_name == plan_name)
    )).scalar_one_or_none()


async def get_price(db: AsyncSession, external_price_id: str) -> PlanPrice | None:
    return (await db.execute(
        select(PlanPrice).where(PlanPrice.external_price_id == external_price_id)
    )).scalar_one_or_none()


async def get_product(db: AsyncSession, external_product_id: str) -> PlanProduct | None:
    return (await db.execute(
        select(PlanProduct).where(PlanProduct.external_product_id == external_product_id)
    )).scalar_one_or_none()
