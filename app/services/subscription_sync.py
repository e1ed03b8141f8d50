"""Pure reconciliation of host subscriptions and the plan catalog from billing events.

Every handler takes the current SubscriptionState (or None), the parsed event and
the resolved plan, and returns the new state plus a tuple of effects. Nothing here
touches the database; billing_events applies the outcome.

Ordering: status and plan fields carry event-time watermarks and are only
overwritten by events at least as new; the paid period only moves forward. With
extend-only slot renewal this makes invoice.paid and subscription.updated
commute.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Union, assert_never

from app.core.errors import HostNotYetKnown
from app.models.enums import BillingPeriod, SubscriptionStatus
from app.models.host_subscription import HostSubscription
from app.schemas.billing_events import (
    BillingEvent,
    CheckoutCompleted,
    CustomerDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    PriceDeleted,
    PriceObject,
    PriceUpserted,
    ProductDeleted,
    ProductUpserted,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionObject,
    SubscriptionUpdated,
    UnknownEvent,
)
from app.services import notifications
from app.services.entitlements import PlanInfo


_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.SUSPENDED,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "incomplete": SubscriptionStatus.SUSPENDED,
    "paused": SubscriptionStatus.SUSPENDED,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
}

_PAST_DUE_STATUSES = {"past_due", "unpaid"}


def map_provider_status(status: str) -> SubscriptionStatus:
    return _STATUS_MAP.get(status, SubscriptionStatus.SUSPENDED)


def billing_period_from_recurring(interval: str, interval_count: int) -> BillingPeriod:
    months = interval_count * (12 if interval == "year" else 1)
    return {
        3: BillingPeriod.QUARTERLY,
        6: BillingPeriod.SEMI_ANNUAL,
        12: BillingPeriod.YEARLY,
    }.get(months, BillingPeriod.MONTHLY)


@dataclass(frozen=True)
class SubscriptionState:
    host_id: str
    status: SubscriptionStatus
    started_at: datetime
    plan_name: str | None = None
    external_price_id: str | None = None
    max_listings: int = 0
    current_period_start: datetime | None = None
    expires_at: datetime | None = None
    trial_ends_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_at_period_end: bool = False
    past_due_since: datetime | None = None
    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    status_as_of: datetime | None = None
    plan_as_of: datetime | None = None


_STATE_FIELDS = tuple(SubscriptionState.__dataclass_fields__)


def state_from_model(row: HostSubscription | None) -> SubscriptionState | None:
    if row is None:
        return None
    return SubscriptionState(**{name: getattr(row, name) for name in _STATE_FIELDS})


def write_state(row: HostSubscription, state: SubscriptionState) -> None:
    for name in _STATE_FIELDS:
        if name == "host_id":
            continue
        setattr(row, name, getattr(state, name))


# ---- effects ----------------------------------------------------------------

@dataclass(frozen=True)
class RenewSlots:
    host_id: str
    period_end: datetime


@dataclass(frozen=True)
class MarkSlotsPastDue:
    host_id: str
    past_due: bool = True


@dataclass(frozen=True)
class Notify:
    template: str
    host_id: str
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpsertPlanProduct:
    external_product_id: str
    name: str
    plan_name: str | None
    is_active: bool = True


@dataclass(frozen=True)
class UpsertPlanPrice:
    external_price_id: str
    external_product_id: str
    plan_name: str | None
    amount: int
    currency: str
    billing_period: BillingPeriod
    is_active: bool = True


@dataclass(frozen=True)
class DeactivatePlanProduct:
    external_product_id: str


@dataclass(frozen=True)
class DeactivatePlanPrice:
    external_price_id: str


Effect = Union[
    RenewSlots,
    MarkSlotsPastDue,
    Notify,
    UpsertPlanProduct,
    UpsertPlanPrice,
    DeactivatePlanProduct,
    DeactivatePlanPrice,
]


@dataclass(frozen=True)
class SyncOutcome:
    state: SubscriptionState | None
    effects: tuple[Effect, ...] = ()


# ---- helpers ----------------------------------------------------------------

def _newer(event_at: datetime, watermark: datetime | None) -> bool:
    return watermark is None or event_at >= watermark


def _advance_period(state: SubscriptionState, start: datetime | None, end: datetime | None) -> SubscriptionState:
    if end is None or (state.expires_at is not None and end <= state.expires_at):
        return state
    return replace(state, expires_at=end, current_period_start=start or state.current_period_start)


def _new_state(host_id: str, created: datetime) -> SubscriptionState:
    return SubscriptionState(host_id=host_id, status=SubscriptionStatus.SUSPENDED, started_at=created)


def _apply_subscription(
    state: SubscriptionState,
    sub: SubscriptionObject,
    created: datetime,
    plan: PlanInfo | None,
) -> tuple[SubscriptionState, list[Effect]]:
    effects: list[Effect] = []
    before = state

    state = replace(
        state,
        external_customer_id=sub.customer or state.external_customer_id,
        external_subscription_id=sub.id,
    )

    # plan_as_of guards fields only subscription objects carry: plan, trial, cancellation schedule
    if _newer(created, state.plan_as_of):
        if plan is not None:
            state = replace(
                state,
                plan_name=plan.plan_name,
                max_listings=plan.max_listings,
                external_price_id=sub.price_id or state.external_price_id,
            )
        state = replace(
            state,
            trial_ends_at=sub.trial_end if sub.status == "trialing" else None,
            cancel_at_period_end=sub.scheduled_to_cancel,
            plan_as_of=created,
        )
        if before.trial_ends_at is not None and sub.status == "active":
            effects.append(Notify(notifications.TRIAL_CONVERTED, state.host_id, {"plan_name": state.plan_name}))

    state = _advance_period(state, sub.period_start, sub.period_end)

    # status_as_of guards fields invoices also write: status, past due, cancellation
    if _newer(created, state.status_as_of):
        status = map_provider_status(sub.status)
        past_due_since = None
        if sub.status in _PAST_DUE_STATUSES:
            past_due_since = state.past_due_since or created

        cancelled_at = None
        if status == SubscriptionStatus.CANCELLED:
            cancelled_at = sub.canceled_at or created

        state = replace(
            state,
            status=status,
            past_due_since=past_due_since,
            cancelled_at=cancelled_at,
            status_as_of=created,
        )
        if status == SubscriptionStatus.SUSPENDED and before.status == SubscriptionStatus.ACTIVE and past_due_since:
            effects.append(MarkSlotsPastDue(state.host_id, True))

    if state.status == SubscriptionStatus.ACTIVE and state.expires_at is not None:
        effects.append(RenewSlots(state.host_id, state.expires_at))

    return state, effects


# ---- handlers ---------------------------------------------------------------

def on_checkout_completed(
    state: SubscriptionState | None,
    event: CheckoutCompleted,
    plan: PlanInfo | None,
) -> SyncOutcome:
    obj = event.data.object
    if state is None:
        if not obj.client_reference_id:
            raise HostNotYetKnown(f"checkout {obj.id} carries no host reference")
        state = _new_state(obj.client_reference_id, event.created)

    was_active = state.status == SubscriptionStatus.ACTIVE
    state = replace(
        state,
        external_customer_id=obj.customer or state.external_customer_id,
        external_subscription_id=obj.subscription_id or state.external_subscription_id,
    )
    effects: list[Effect] = []

    sub = obj.expanded_subscription
    if sub is not None:
        state, effects = _apply_subscription(state, sub, event.created, plan)

    if state.status == SubscriptionStatus.ACTIVE and not was_active:
        effects.append(Notify(
            notifications.SUBSCRIPTION_ACTIVATED,
            state.host_id,
            {"plan_name": state.plan_name, "max_listings": state.max_listings},
        ))
    return SyncOutcome(state, tuple(effects))


def on_subscription_upserted(
    state: SubscriptionState | None,
    event: SubscriptionCreated | SubscriptionUpdated,
    plan: PlanInfo | None,
    host_id: str | None = None,
) -> SyncOutcome:
    sub = event.data.object
    if state is None:
        host_id = host_id or sub.metadata.get("host_id") or sub.metadata.get("hostId")
        if not host_id:
            raise HostNotYetKnown(f"customer {sub.customer} is not linked to a host")
        state = _new_state(host_id, event.created)

    was_cancelling = state.cancel_at_period_end
    state, effects = _apply_subscription(state, sub, event.created, plan)

    if was_cancelling and state.status == SubscriptionStatus.ACTIVE and not state.cancel_at_period_end:
        effects.append(Notify(notifications.SUBSCRIPTION_ACTIVATED, state.host_id, {"reactivated": True}))
    return SyncOutcome(state, tuple(effects))


def on_subscription_deleted(state: SubscriptionState | None, event: SubscriptionDeleted) -> SyncOutcome:
    # slots are left to expire on their own dates
    if state is None:
        raise HostNotYetKnown(f"customer {event.data.object.customer} is not linked to a host")
    if not _newer(event.created, state.status_as_of) or state.status == SubscriptionStatus.CANCELLED:
        return SyncOutcome(state)

    sub = event.data.object
    state = replace(
        state,
        status=SubscriptionStatus.CANCELLED,
        cancelled_at=sub.canceled_at or event.created,
        cancel_at_period_end=False,
        past_due_since=None,
        status_as_of=event.created,
    )
    return SyncOutcome(state, (Notify(notifications.SUBSCRIPTION_CANCELLED, state.host_id, {}),))


def on_invoice_paid(state: SubscriptionState | None, event: InvoicePaid) -> SyncOutcome:
    inv = event.data.object
    if state is None:
        raise HostNotYetKnown(f"customer {inv.customer} is not linked to a host")

    state = _advance_period(state, inv.service_period_start, inv.service_period_end)
    if _newer(event.created, state.status_as_of):
        state = replace(
            state,
            status=SubscriptionStatus.ACTIVE,
            past_due_since=None,
            cancelled_at=None,
            status_as_of=event.created,
        )

    effects: list[Effect] = []
    if state.status == SubscriptionStatus.ACTIVE and state.expires_at is not None:
        effects.append(RenewSlots(state.host_id, state.expires_at))
        if inv.billing_reason == "subscription_cycle":
            effects.append(Notify(
                notifications.SUBSCRIPTION_RENEWED,
                state.host_id,
                {"period_end": state.expires_at.isoformat(), "amount_paid": inv.amount_paid, "currency": inv.currency},
            ))
    return SyncOutcome(state, tuple(effects))


def on_invoice_payment_failed(state: SubscriptionState | None, event: InvoicePaymentFailed) -> SyncOutcome:
    inv = event.data.object
    if state is None:
        raise HostNotYetKnown(f"customer {inv.customer} is not linked to a host")
    if not _newer(event.created, state.status_as_of) or state.status == SubscriptionStatus.CANCELLED:
        return SyncOutcome(state)

    state = replace(
        state,
        status=SubscriptionStatus.SUSPENDED,
        past_due_since=state.past_due_since or event.created,
        status_as_of=event.created,
    )
    return SyncOutcome(state, (
        MarkSlotsPastDue(state.host_id, True),
        Notify(notifications.PAYMENT_FAILED, state.host_id, {"invoice_id": inv.id}),
    ))


def on_customer_deleted(state: SubscriptionState | None, event: CustomerDeleted) -> SyncOutcome:
    if state is None:
        # nothing linked; deletion of an unknown customer is a no-op
        return SyncOutcome(None)
    state = replace(
        state,
        status=SubscriptionStatus.CANCELLED,
        cancelled_at=state.cancelled_at or event.created,
        cancel_at_period_end=False,
        past_due_since=None,
        external_customer_id=None,
        external_subscription_id=None,
        status_as_of=max(event.created, state.status_as_of) if state.status_as_of else event.created,
    )
    return SyncOutcome(state)


def on_product(event: ProductUpserted | ProductDeleted) -> tuple[Effect, ...]:
    product = event.data.object
    if isinstance(event, ProductDeleted) or not product.active:
        return (DeactivatePlanProduct(product.id),)
    return (UpsertPlanProduct(
        external_product_id=product.id,
        name=product.name,
        plan_name=product.metadata.get("planId") or product.metadata.get("plan_name"),
    ),)


def _price_effect(price: PriceObject) -> UpsertPlanPrice:
    recurring = price.recurring
    return UpsertPlanPrice(
        external_price_id=price.id,
        external_product_id=price.product,
        plan_name=price.metadata.get("planId") or price.metadata.get("plan_name"),
        amount=price.unit_amount or 0,
        currency=price.currency,
        billing_period=(
            billing_period_from_recurring(recurring.interval, recurring.interval_count)
            if recurring else BillingPeriod.MONTHLY
        ),
    )


def on_price(event: PriceUpserted | PriceDeleted) -> tuple[Effect, ...]:
    price = event.data.object
    if isinstance(event, PriceDeleted) or not price.active:
        return (DeactivatePlanPrice(price.id),)
    return (_price_effect(price),)


def sync(
    state: SubscriptionState | None,
    event: BillingEvent | UnknownEvent,
    plan: PlanInfo | None = None,
    *,
    host_id: str | None = None,
) -> SyncOutcome:
    """Route one parsed event to its handler."""
    match event:
        case CheckoutCompleted():
            return on_checkout_completed(state, event, plan)
        case SubscriptionCreated() | SubscriptionUpdated():
            return on_subscription_upserted(state, event, plan, host_id)
        case SubscriptionDeleted():
            return on_subscription_deleted(state, event)
        case InvoicePaid():
            return on_invoice_paid(state, event)
        case InvoicePaymentFailed():
            return on_invoice_payment_failed(state, event)
        case CustomerDeleted():
            return on_customer_deleted(state, event)
        case ProductUpserted() | ProductDeleted():
            return SyncOutcome(state, on_product(event))
        case PriceUpserted() | PriceDeleted():
            return SyncOutcome(state, on_price(event))
        case UnknownEvent():
            return SyncOutcome(state)
        case _:
            assert_never(event)
