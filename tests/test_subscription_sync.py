from dataclasses import replace
from datetime import timedelta

import pytest
from pydantic import ValidationError

from app.core.errors import HostNotYetKnown
from app.models.enums import BillingPeriod, SubscriptionStatus
from app.schemas.billing_events import InvoicePaid, UnknownEvent, parse_billing_event
from app.services import notifications
from app.services.entitlements import PlanInfo
from app.services.subscription_sync import (
    DeactivatePlanPrice,
    MarkSlotsPastDue,
    Notify,
    RenewSlots,
    SubscriptionState,
    UpsertPlanPrice,
    UpsertPlanProduct,
    billing_period_from_recurring,
    map_provider_status,
    sync,
)
from fixtures_seed import checkout_obj, envelope, invoice_obj, now_s, subscription_obj

BASIC = PlanInfo("basic", 2, BillingPeriod.MONTHLY)
PRO = PlanInfo("pro", 5, BillingPeriod.MONTHLY)


def _state(**overrides) -> SubscriptionState:
    t0 = now_s() - timedelta(days=20)
    base = SubscriptionState(
        host_id="host_1",
        status=SubscriptionStatus.ACTIVE,
        started_at=t0,
        plan_name="basic",
        external_price_id="price_basic",
        max_listings=2,
        current_period_start=t0,
        expires_at=t0 + timedelta(days=30),
        external_customer_id="cus_1",
        external_subscription_id="sub_cus_1",
        status_as_of=t0,
        plan_as_of=t0,
    )
    return replace(base, **overrides)


def _event(event_type, obj, **kwargs):
    return parse_billing_event(envelope(event_type, obj, **kwargs))


def _templates(outcome):
    return [e.template for e in outcome.effects if isinstance(e, Notify)]


@pytest.mark.parametrize(
    "provider_status, expected",
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("trialing", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.SUSPENDED),
        ("unpaid", SubscriptionStatus.SUSPENDED),
        ("incomplete", SubscriptionStatus.SUSPENDED),
        ("canceled", SubscriptionStatus.CANCELLED),
        ("incomplete_expired", SubscriptionStatus.CANCELLED),
        ("something_new", SubscriptionStatus.SUSPENDED),
    ],
)
def test_map_provider_status(provider_status, expected):
    assert map_provider_status(provider_status) == expected


def test_billing_period_from_recurring():
    assert billing_period_from_recurring("month", 1) == BillingPeriod.MONTHLY
    assert billing_period_from_recurring("month", 3) == BillingPeriod.QUARTERLY
    assert billing_period_from_recurring("month", 6) == BillingPeriod.SEMI_ANNUAL
    assert billing_period_from_recurring("year", 1) == BillingPeriod.YEARLY


def test_unknown_type_parses_to_unknown_event():
    event = parse_billing_event({"id": "evt_x", "type": "charge.refunded", "data": {}})
    assert isinstance(event, UnknownEvent)
    assert sync(_state(), event).effects == ()


def test_malformed_known_type_raises():
    with pytest.raises(ValidationError):
        parse_billing_event({"id": "evt_x", "type": "invoice.paid", "created": 1, "data": {"object": {"id": "in_1"}}})


def test_checkout_creates_active_subscription():
    now = now_s()
    sub = subscription_obj("cus_new", period_start=now, period_end=now + timedelta(days=30))
    event = _event("checkout.session.completed", checkout_obj("host_new", "cus_new", sub), created=now)

    outcome = sync(None, event, BASIC)

    state = outcome.state
    assert state.host_id == "host_new"
    assert state.status == SubscriptionStatus.ACTIVE
    assert state.plan_name == "basic"
    assert state.max_listings == 2
    assert state.external_customer_id == "cus_new"
    assert state.expires_at == now + timedelta(days=30)
    assert _templates(outcome) == [notifications.SUBSCRIPTION_ACTIVATED]


def test_checkout_without_host_reference_is_retried():
    now = now_s()
    obj = checkout_obj("host_new", "cus_new", "sub_cus_new")
    obj["client_reference_id"] = None
    with pytest.raises(HostNotYetKnown):
        sync(None, _event("checkout.session.completed", obj, created=now))


def test_invoice_for_unknown_customer_is_retried():
    now = now_s()
    event = _event("invoice.paid", invoice_obj("cus_x", period_start=now, period_end=now + timedelta(days=30)))
    with pytest.raises(HostNotYetKnown):
        sync(None, event)


def test_invoice_paid_extends_period_and_renews():
    state = _state(status=SubscriptionStatus.SUSPENDED, past_due_since=now_s() - timedelta(days=2))
    start = state.expires_at
    end = start + timedelta(days=30)
    event = _event("invoice.paid", invoice_obj("cus_1", period_start=start, period_end=end))

    outcome = sync(state, event)

    assert outcome.state.status == SubscriptionStatus.ACTIVE
    assert outcome.state.past_due_since is None
    assert outcome.state.expires_at == end
    assert outcome.state.current_period_start == start
    assert RenewSlots("host_1", end) in outcome.effects
    assert _templates(outcome) == [notifications.SUBSCRIPTION_RENEWED]


def test_first_invoice_is_not_announced_as_renewal():
    state = _state()
    end = state.expires_at + timedelta(days=30)
    event = _event(
        "invoice.paid",
        invoice_obj("cus_1", period_start=state.expires_at, period_end=end, billing_reason="subscription_create"),
    )
    assert _templates(sync(state, event)) == []


def test_invoice_paid_never_moves_period_back():
    state = _state()
    event = _event(
        "invoice.paid",
        invoice_obj("cus_1", period_start=state.started_at - timedelta(days=30), period_end=state.started_at),
    )
    assert sync(state, event).state.expires_at == state.expires_at


def test_payment_failed_suspends_and_flags_slots():
    state = _state()
    created = now_s()
    event = _event(
        "invoice.payment_failed",
        invoice_obj("cus_1", period_start=state.expires_at, period_end=state.expires_at + timedelta(days=30)),
        created=created,
    )

    outcome = sync(state, event)

    assert outcome.state.status == SubscriptionStatus.SUSPENDED
    assert outcome.state.past_due_since == created
    assert MarkSlotsPastDue("host_1", True) in outcome.effects
    assert _templates(outcome) == [notifications.PAYMENT_FAILED]

    # a second failure keeps the original past-due start
    again = _event(
        "invoice.payment_failed",
        invoice_obj("cus_1", period_start=state.expires_at, period_end=state.expires_at + timedelta(days=30)),
        created=created + timedelta(days=3),
    )
    assert sync(outcome.state, again).state.past_due_since == created


def test_subscription_deleted_cancels_without_touching_slots():
    state = _state()
    created = now_s()
    sub = subscription_obj("cus_1", status="canceled", period_start=state.current_period_start, period_end=state.expires_at)
    outcome = sync(state, _event("customer.subscription.deleted", sub, created=created))

    assert outcome.state.status == SubscriptionStatus.CANCELLED
    assert outcome.state.cancelled_at == created
    assert not any(isinstance(e, (RenewSlots, MarkSlotsPastDue)) for e in outcome.effects)
    assert _templates(outcome) == [notifications.SUBSCRIPTION_CANCELLED]


def test_older_subscription_update_does_not_overwrite_status():
    now = now_s()
    state = _state(status=SubscriptionStatus.CANCELLED, cancelled_at=now, status_as_of=now, plan_as_of=now)
    sub = subscription_obj("cus_1", period_start=state.current_period_start, period_end=state.expires_at)

    outcome = sync(state, _event("customer.subscription.updated", sub, created=now - timedelta(hours=1)), BASIC)

    assert outcome.state.status == SubscriptionStatus.CANCELLED
    assert outcome.state.status_as_of == now


def test_plan_change_refreshes_capacity():
    state = _state()
    sub = subscription_obj(
        "cus_1", plan="pro", price_id="price_pro",
        period_start=state.current_period_start, period_end=state.expires_at,
    )
    outcome = sync(state, _event("customer.subscription.updated", sub), PRO)

    assert outcome.state.plan_name == "pro"
    assert outcome.state.max_listings == 5
    assert outcome.state.external_price_id == "price_pro"


def test_trial_conversion_clears_trial_and_notifies():
    state = _state(trial_ends_at=now_s() + timedelta(days=1))
    sub = subscription_obj("cus_1", period_start=state.current_period_start, period_end=state.expires_at)

    outcome = sync(state, _event("customer.subscription.updated", sub), BASIC)

    assert outcome.state.trial_ends_at is None
    assert notifications.TRIAL_CONVERTED in _templates(outcome)


def test_cancel_at_period_end_toggled_off_reactivates():
    state = _state(cancel_at_period_end=True)
    sub = subscription_obj("cus_1", period_start=state.current_period_start, period_end=state.expires_at)

    outcome = sync(state, _event("customer.subscription.updated", sub), BASIC)

    assert outcome.state.cancel_at_period_end is False
    assert Notify(notifications.SUBSCRIPTION_ACTIVATED, "host_1", {"reactivated": True}) in outcome.effects


def test_past_due_subscription_update_flags_slots():
    state = _state()
    sub = subscription_obj("cus_1", status="past_due", period_start=state.current_period_start, period_end=state.expires_at)
    created = now_s()

    outcome = sync(state, _event("customer.subscription.updated", sub, created=created), BASIC)

    assert outcome.state.status == SubscriptionStatus.SUSPENDED
    assert outcome.state.past_due_since == created
    assert MarkSlotsPastDue("host_1", True) in outcome.effects
    assert not any(isinstance(e, RenewSlots) for e in outcome.effects)


def test_invoice_paid_and_subscription_updated_commute():
    state = _state()
    t1 = now_s()
    t2 = t1 + timedelta(seconds=5)
    start = state.expires_at
    end = start + timedelta(days=30)

    paid = _event("invoice.paid", invoice_obj("cus_1", period_start=start, period_end=end), created=t1)
    updated = _event(
        "customer.subscription.updated",
        subscription_obj("cus_1", plan="pro", price_id="price_pro", period_start=start, period_end=end),
        created=t2,
    )

    a = sync(sync(state, paid).state, updated, PRO).state
    b = sync(sync(state, updated, PRO).state, paid).state

    assert a == b
    assert a.status == SubscriptionStatus.ACTIVE
    assert a.plan_name == "pro"
    assert a.expires_at == end


def test_customer_deleted_detaches_references():
    state = _state()
    outcome = sync(state, _event("customer.deleted", {"id": "cus_1"}))

    assert outcome.state.status == SubscriptionStatus.CANCELLED
    assert outcome.state.external_customer_id is None
    assert outcome.state.external_subscription_id is None
    assert sync(None, _event("customer.deleted", {"id": "cus_unknown"})).state is None


def test_catalog_events():
    product = _event("product.created", {"id": "prod_1", "name": "Basic", "metadata": {"planId": "basic"}})
    assert sync(None, product).effects == (UpsertPlanProduct("prod_1", "Basic", "basic"),)

    price = _event("price.created", {
        "id": "price_y", "product": "prod_1", "unit_amount": 19000, "currency": "eur",
        "recurring": {"interval": "year", "interval_count": 1},
    })
    (effect,) = sync(None, price).effects
    assert isinstance(effect, UpsertPlanPrice)
    assert effect.billing_period == BillingPeriod.YEARLY
    assert effect.plan_name is None

    deleted = _event("price.deleted", {"id": "price_y", "product": "prod_1"})
    assert sync(None, deleted).effects == (DeactivatePlanPrice("price_y"),)


def test_parsed_invoice_prefers_subscription_line_period():
    now = now_s()
    obj = invoice_obj("cus_1", period_start=now, period_end=now + timedelta(days=30))
    obj["period_start"] = int((now - timedelta(days=30)).timestamp())
    obj["period_end"] = int(now.timestamp())
    event = _event("invoice.paid", obj)

    assert isinstance(event, InvoicePaid)
    assert event.data.object.service_period_end == now + timedelta(days=30)
    assert event.data.object.subscription_id == "sub_cus_1"


def test_unrouted_event_kind_is_not_silently_ignored():
    with pytest.raises(AssertionError):
        sync(_state(), object())
