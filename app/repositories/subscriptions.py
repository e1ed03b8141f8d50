from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.host_subscription import HostSubscription


async def get_host_subscription(
    db: AsyncSession,
    host_id: str,
    *,
    for_update: bool = False,
) -> HostSubscription | None:
    stmt = (
        select(HostSubscription)
        .where(HostSubscription.host_id == host_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        # serializes events for the same host
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_host_subscription_by_customer(
    db: AsyncSession,
    external_customer_id: str,
    *,
    for_update: bool = False,
) -> HostSubscription | None:
    stmt = (
        select(HostSubscription)
        .where(HostSubscription.external_customer_id == external_customer_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()
