"""Plan entitlement lookups and the per-host slot capacity check."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from cachetools import TTLCache
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import EntitlementConflict, EntitlementDeclined
from app.models.enums import BillingPeriod, SubscriptionStatus
from app.models.host_subscription import HostSubscription
from app.repositories import plans as plans_repo
from app.repositories import slots as slots_repo
from app.repositories import subscriptions as subs_repo


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanInfo:
    plan_name: str
    max_listings: int
    billing_period: BillingPeriod
    is_active: bool = True


@dataclass(frozen=True)
class Entitlement:
    host_id: str
    plan_name: str | None
    max_listings: int
    used: int
    slot_version: int

    @property
    def available(self) -> int:
        return max(0, self.max_listings - self.used)


# plan_name -> PlanInfo; plans change rarely, a short TTL bounds staleness
_plan_cache: TTLCache = TTLCache(maxsize=256, ttl=settings.plan_cache_ttl_seconds)


def invalidate_plan_cache(plan_name: str | None = None) -> None:
    if plan_name is None:
        _plan_cache.clear()
    else:
        _plan_cache.pop(plan_name, None)


async def get_plan_info(db: AsyncSession, plan_name: str) -> PlanInfo | None:
    cached = _plan_cache.get(plan_name)
    if cached is not None:
        return cached

    plan = await plans_repo.get_plan(db, plan_name)
    if plan is None:
        return None
    info = PlanInfo(
        plan_name=plan.plan_name,
        max_listings=plan.max_listings,
        billing_period=plan.billing_period,
        is_active=plan.is_active,
    )
    _plan_cache[plan_name] = info
    return info


async def resolve_plan_for_price(
    db: AsyncSession,
    external_price_id: str | None,
    plan_hint: str | None = None,
) -> PlanInfo | None:
    """
    Map a provider price to one of our plans.

    Order: plan name carried on the price metadata, then the catalog cache
    (price row, then its product row), then the price id itself as a plan name.
    """
    candidates: list[str] = []
    if plan_hint:
        candidates.append(plan_hint)
    if external_price_id:
        price = await plans_repo.get_price(db, external_price_id)
        if price is not None:
            if price.plan_name:
                candidates.append(price.plan_name)
            product = await plans_repo.get_product(db, price.external_product_id)
            if product is not None and product.plan_name:
                candidates.append(product.plan_name)
        candidates.append(external_price_id)

    for name in candidates:
        info = await get_plan_info(db, name)
        if info is not None:
            return info

    if external_price_id:
        log.warning("entitlements: no plan for price=%s hint=%s", external_price_id, plan_hint)
    return None


async def check_entitlement(db: AsyncSession, host_id: str) -> Entitlement:
    """Raise EntitlementDeclined unless the host may take one more slot."""
    sub = await subs_repo.get_host_subscription(db, host_id)
    if sub is None:
        raise EntitlementDeclined(
            "no_subscription",
            "You need an active subscription to publish listings.",
        )
    if sub.status != SubscriptionStatus.ACTIVE:
        raise EntitlementDeclined(
            "subscription_inactive",
            f"Your subscription is {sub.status.value.lower()}. Update your billing details to publish listings.",
        )

    used = await slots_repo.count_live_slots(db, host_id)
    if used >= sub.max_listings:
        raise EntitlementDeclined(
            "limit_reached",
            f"Your plan allows {sub.max_listings} published listing(s) and all are in use. "
            "Unpublish a listing or upgrade your plan.",
        )

    return Entitlement(
        host_id=host_id,
        plan_name=sub.plan_name,
        max_listings=sub.max_listings,
        used=used,
        slot_version=sub.slot_version,
    )


async def reserve_slot_capacity(db: AsyncSession, host_id: str, expected_version: int) -> None:
    """Compare-and-swap on slot_version; raises EntitlementConflict if another grant won."""
    result = await db.execute(
        update(HostSubscription)
        .where(
            HostSubscription.host_id == host_id,
            HostSubscription.slot_version == expected_version,
            HostSubscription.status == SubscriptionStatus.ACTIVE,
        )
        .values(slot_version=HostSubscription.slot_version + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        raise EntitlementConflict(f"slot capacity for host {host_id} changed concurrently")
