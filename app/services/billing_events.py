"""Billing event processor: ledger check -> synchronizer -> effects, in one transaction."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvariantViolation, TransientStoreError
from app.models.base import utcnow
from app.models.enums import InboundEventStatus
from app.models.host_subscription import HostSubscription
from app.models.inbound_event import InboundEvent
from app.models.subscription_plan import PlanPrice, PlanProduct
from app.repositories import plans as plans_repo
from app.repositories import subscriptions as subs_repo
from app.schemas.billing_events import (
    BillingEvent,
    CheckoutCompleted,
    CustomerDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionObject,
    SubscriptionUpdated,
    UnknownEvent,
    parse_billing_event,
)
from app.services import event_queue, notifications, slot_lifecycle
from app.services.entitlements import PlanInfo, invalidate_plan_cache, resolve_plan_for_price
from app.services.idempotency import has_processed, mark_processed
from app.services.subscription_sync import (
    DeactivatePlanPrice,
    DeactivatePlanProduct,
    Effect,
    MarkSlotsPastDue,
    Notify,
    RenewSlots,
    UpsertPlanPrice,
    UpsertPlanProduct,
    state_from_model,
    sync,
    write_state,
)


log = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
DROPPED = "dropped"
RETRY = "retry"
DEAD_LETTERED = "dead_lettered"
LEASE_LOST = "lease_lost"


class DropEvent(Exception):
    """Event is malformed or of a kind we do not handle; acknowledge and discard."""


@dataclass
class ApplyResult:
    outcome: str
    event_id: str | None = None
    event_type: str | None = None
    notifications: list[Notify] = field(default_factory=list)


def _subscription_of(event: BillingEvent) -> SubscriptionObject | None:
    match event:
        case SubscriptionCreated() | SubscriptionUpdated() | SubscriptionDeleted():
            return event.data.object
        case CheckoutCompleted():
            return event.data.object.expanded_subscription
    return None


async def _load_host(db: AsyncSession, event: BillingEvent) -> tuple[HostSubscription | None, str | None]:
    """Locked HostSubscription row the event belongs to, plus a host id hint for first contact."""
    match event:
        case CheckoutCompleted():
            obj = event.data.object
            row = None
            if obj.client_reference_id:
                row = await subs_repo.get_host_subscription(db, obj.client_reference_id, for_update=True)
            if row is None and obj.customer:
                row = await subs_repo.get_host_subscription_by_customer(db, obj.customer, for_update=True)
            return row, obj.client_reference_id
        case SubscriptionCreated() | SubscriptionUpdated() | SubscriptionDeleted():
            sub = event.data.object
            row = await subs_repo.get_host_subscription_by_customer(db, sub.customer, for_update=True)
            hint = sub.metadata.get("host_id") or sub.metadata.get("hostId")
            if row is None and hint:
                row = await subs_repo.get_host_subscription(db, hint, for_update=True)
            return row, hint
        case InvoicePaid() | InvoicePaymentFailed():
            row = await subs_repo.get_host_subscription_by_customer(db, event.data.object.customer, for_update=True)
            return row, None
        case CustomerDeleted():
            row = await subs_repo.get_host_subscription_by_customer(db, event.data.object.id, for_update=True)
            return row, None
    return None, None


async def _resolve_plan(db: AsyncSession, event: BillingEvent) -> PlanInfo | None:
    sub = _subscription_of(event)
    if sub is None:
        return None
    return await resolve_plan_for_price(db, sub.price_id, sub.plan_hint)


async def _apply_effect(db: AsyncSession, effect: Effect, now: datetime) -> None:
    match effect:
        case RenewSlots(host_id=host_id, period_end=period_end):
            await slot_lifecycle.renew_host_slots(db, host_id, period_end, now)
        case MarkSlotsPastDue(host_id=host_id, past_due=past_due):
            await slot_lifecycle.mark_host_slots_past_due(db, host_id, past_due)
        case UpsertPlanProduct():
            product = await plans_repo.get_product(db, effect.external_product_id)
            if product is None:
                product = PlanProduct(external_product_id=effect.external_product_id)
                db.add(product)
            product.name = effect.name
            product.plan_name = effect.plan_name
            product.is_active = effect.is_active
            invalidate_plan_cache()
        case UpsertPlanPrice():
            price = await plans_repo.get_price(db, effect.external_price_id)
            if price is None:
                price = PlanPrice(external_price_id=effect.external_price_id)
                db.add(price)
            plan_name = effect.plan_name
            if plan_name is None:
                product = await plans_repo.get_product(db, effect.external_product_id)
                plan_name = product.plan_name if product is not None else None
            price.external_product_id = effect.external_product_id
            price.plan_name = plan_name
            price.amount = effect.amount
            price.currency = effect.currency
            price.billing_period = effect.billing_period
            price.is_active = effect.is_active
            invalidate_plan_cache()
        case DeactivatePlanProduct():
            product = await plans_repo.get_product(db, effect.external_product_id)
            if product is not None:
                product.is_active = False
        case DeactivatePlanPrice():
            price = await plans_repo.get_price(db, effect.external_price_id)
            if price is not None:
                price.is_active = False
        case Notify():
            pass  # sent after commit


async def apply_billing_event(db: AsyncSession, raw: dict[str, Any]) -> ApplyResult:
    """
    Apply one provider event inside the caller's transaction (caller commits).

    Raises DropEvent for malformed/unknown events, HostNotYetKnown (transient) when
    the customer cannot be resolved yet, InvariantViolation on corrupt state.
    """
    try:
        event = parse_billing_event(raw)
    except ValidationError as e:
        raise DropEvent(f"malformed {raw.get('type')} event: {e.error_count()} validation errors") from e
    if isinstance(event, UnknownEvent):
        raise DropEvent(f"unhandled event type {event.type!r}")

    if await has_processed(db, event.id):
        log.info("billing_events: %s %s already processed", event.type, event.id)
        return ApplyResult(DUPLICATE, event.id, event.type)

    now = utcnow()
    row, host_hint = await _load_host(db, event)
    plan = await _resolve_plan(db, event)
    outcome = sync(state_from_model(row), event, plan, host_id=host_hint)

    if outcome.state is not None:
        if row is None:
            row = HostSubscription(host_id=outcome.state.host_id, started_at=outcome.state.started_at)
            db.add(row)
        write_state(row, outcome.state)
        await db.flush()

    for effect in outcome.effects:
        await _apply_effect(db, effect, now)

    await mark_processed(db, event.id, event.type)
    log.info(
        "billing_events: applied %s %s host=%s effects=%s",
        event.type, event.id,
        outcome.state.host_id if outcome.state else None,
        [type(e).__name__ for e in outcome.effects],
    )
    return ApplyResult(
        APPLIED,
        event.id,
        event.type,
        [e for e in outcome.effects if isinstance(e, Notify)],
    )


async def _send_notifications(items: list[Notify]) -> None:
    for item in items:
        await notifications.notify(item.template, item.host_id, item.variables)


def _retry_outcome(status: InboundEventStatus | None) -> str:
    if status is None:
        return LEASE_LOST
    return RETRY if status == InboundEventStatus.PENDING else DEAD_LETTERED


async def handle_inbox_message(db: AsyncSession, ev: InboundEvent, lease_id: str) -> str:
    """
    Run one leased inbox row to completion and settle it: ack, drop, nack or
    dead-letter. Business effect and ack commit together.
    """
    inbox_id = ev.id
    payload = dict(ev.payload or {})

    try:
        result = await apply_billing_event(db, payload)
    except DropEvent as e:
        await db.rollback()
        await event_queue.drop(db, inbox_id, lease_id, str(e))
        await db.commit()
        return DROPPED
    except InvariantViolation as e:
        await db.rollback()
        log.error("billing_events: invariant violated by %s: %s", inbox_id, e)
        await event_queue.dead_letter(db, inbox_id, lease_id, f"InvariantViolation: {e}")
        await db.commit()
        return DEAD_LETTERED
    except (TransientStoreError, OperationalError, IntegrityError) as e:
        # IntegrityError here is a lost ledger race; the retry short-circuits
        await db.rollback()
        status = await event_queue.nack(db, inbox_id, lease_id, f"{type(e).__name__}: {e}")
        await db.commit()
        return _retry_outcome(status)
    except Exception as e:
        await db.rollback()
        log.exception("billing_events: unexpected failure on %s", inbox_id)
        status = await event_queue.nack(db, inbox_id, lease_id, f"{type(e).__name__}: {e}")
        await db.commit()
        return _retry_outcome(status)

    if not await event_queue.ack(db, inbox_id, lease_id):
        # lease lost; another worker owns the message now
        await db.rollback()
        return LEASE_LOST
    await db.commit()

    await _send_notifications(result.notifications)
    return result.outcome
