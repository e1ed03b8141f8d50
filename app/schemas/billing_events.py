"""Inbound payment-provider events.

Events arrive as provider envelopes (``{"id", "type", "created", "data": {"object": ...}}``)
and are parsed into a closed union with one class per event kind. Anything whose
``type`` is not listed here parses to ``UnknownEvent`` and is dropped by the processor.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Obj(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---- provider objects -------------------------------------------------------

class PriceRef(_Obj):
    id: str
    product: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SubscriptionItem(_Obj):
    price: PriceRef | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None


class SubscriptionItems(_Obj):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(_Obj):
    id: str
    customer: str
    status: str  # provider status: active, trialing, past_due, canceled, ...
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    cancel_at: datetime | None = None
    canceled_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def first_item(self) -> SubscriptionItem | None:
        return self.items.data[0] if self.items.data else None

    @property
    def price_id(self) -> str | None:
        item = self.first_item
        return item.price.id if item and item.price else None

    @property
    def plan_hint(self) -> str | None:
        # plan name carried on price metadata, if the catalog sets it
        item = self.first_item
        if item and item.price:
            return item.price.metadata.get("planId") or item.price.metadata.get("plan_name")
        return None

    @property
    def period_start(self) -> datetime | None:
        item = self.first_item
        return self.current_period_start or (item.current_period_start if item else None)

    @property
    def period_end(self) -> datetime | None:
        item = self.first_item
        return self.current_period_end or (item.current_period_end if item else None)

    @property
    def scheduled_to_cancel(self) -> bool:
        return self.cancel_at_period_end or self.cancel_at is not None


class CheckoutSessionObject(_Obj):
    id: str
    customer: str | None = None
    # id, or the expanded subscription object
    subscription: str | SubscriptionObject | None = None
    client_reference_id: str | None = None  # our host id

    @property
    def subscription_id(self) -> str | None:
        if isinstance(self.subscription, SubscriptionObject):
            return self.subscription.id
        return self.subscription

    @property
    def expanded_subscription(self) -> SubscriptionObject | None:
        return self.subscription if isinstance(self.subscription, SubscriptionObject) else None


class InvoicePeriod(_Obj):
    start: datetime
    end: datetime


class InvoiceLine(_Obj):
    subscription: str | None = None
    period: InvoicePeriod | None = None


class InvoiceLines(_Obj):
    data: list[InvoiceLine] = Field(default_factory=list)


class InvoiceObject(_Obj):
    id: str
    customer: str
    subscription: str | None = None
    billing_reason: str | None = None
    amount_paid: int = 0
    currency: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    lines: InvoiceLines = Field(default_factory=InvoiceLines)

    def _subscription_line(self) -> InvoiceLine | None:
        for line in self.lines.data:
            if line.subscription and line.period:
                return line
        return None

    @property
    def service_period_start(self) -> datetime | None:
        line = self._subscription_line()
        return line.period.start if line else self.period_start

    @property
    def service_period_end(self) -> datetime | None:
        # the subscription line carries the period being paid for
        line = self._subscription_line()
        return line.period.end if line else self.period_end

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        line = self._subscription_line()
        return line.subscription if line else None


class CustomerObject(_Obj):
    id: str
    email: str | None = None


class ProductObject(_Obj):
    id: str
    name: str = ""
    active: bool = True
    metadata: dict[str, str] = Field(default_factory=dict)


class PriceRecurring(_Obj):
    interval: str = "month"
    interval_count: int = 1


class PriceObject(_Obj):
    id: str
    product: str
    active: bool = True
    unit_amount: int | None = None
    currency: str = "eur"
    recurring: PriceRecurring | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


# ---- envelopes --------------------------------------------------------------

class _EventBase(_Obj):
    id: str  # provider event id == idempotency key
    created: datetime


class _Data(_Obj):
    previous_attributes: dict[str, Any] | None = None


class CheckoutData(_Data):
    object: CheckoutSessionObject


class SubscriptionData(_Data):
    object: SubscriptionObject


class InvoiceData(_Data):
    object: InvoiceObject


class CustomerData(_Data):
    object: CustomerObject


class ProductData(_Data):
    object: ProductObject


class PriceData(_Data):
    object: PriceObject


class CheckoutCompleted(_EventBase):
    type: Literal["checkout.session.completed"]
    data: CheckoutData


class SubscriptionCreated(_EventBase):
    type: Literal["customer.subscription.created"]
    data: SubscriptionData


class SubscriptionUpdated(_EventBase):
    type: Literal["customer.subscription.updated"]
    data: SubscriptionData


class SubscriptionDeleted(_EventBase):
    type: Literal["customer.subscription.deleted"]
    data: SubscriptionData


class InvoicePaid(_EventBase):
    type: Literal["invoice.paid"]
    data: InvoiceData


class InvoicePaymentFailed(_EventBase):
    type: Literal["invoice.payment_failed"]
    data: InvoiceData


class CustomerDeleted(_EventBase):
    type: Literal["customer.deleted"]
    data: CustomerData


class ProductUpserted(_EventBase):
    type: Literal["product.created", "product.updated"]
    data: ProductData


class ProductDeleted(_EventBase):
    type: Literal["product.deleted"]
    data: ProductData


class PriceUpserted(_EventBase):
    type: Literal["price.created", "price.updated"]
    data: PriceData


class PriceDeleted(_EventBase):
    type: Literal["price.deleted"]
    data: PriceData


class UnknownEvent(_Obj):
    """Event kind this processor does not handle (yet)."""

    id: str | None = None
    type: str | None = None


BillingEvent = Annotated[
    Union[
        CheckoutCompleted,
        SubscriptionCreated,
        SubscriptionUpdated,
        SubscriptionDeleted,
        InvoicePaid,
        InvoicePaymentFailed,
        CustomerDeleted,
        ProductUpserted,
        ProductDeleted,
        PriceUpserted,
        PriceDeleted,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[BillingEvent] = TypeAdapter(BillingEvent)

KNOWN_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.paid",
    "invoice.payment_failed",
    "customer.deleted",
    "product.created",
    "product.updated",
    "product.deleted",
    "price.created",
    "price.updated",
    "price.deleted",
})


def parse_billing_event(raw: dict[str, Any]) -> BillingEvent | UnknownEvent:
    """Parse a provider envelope.

    Unknown ``type`` -> ``UnknownEvent``. A known type with a malformed body raises
    ``pydantic.ValidationError``.
    """
    event_type = raw.get("type") if isinstance(raw, dict) else None
    if event_type not in KNOWN_EVENT_TYPES:
        return UnknownEvent(
            id=raw.get("id") if isinstance(raw, dict) else None,
            type=event_type if isinstance(event_type, str) else None,
        )
    return _adapter.validate_python(raw)


class EventEnvelopeIn(BaseModel):
    """Loose shape accepted at the ingestion endpoint; full parsing happens in the worker."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(max_length=200)
    type: str = Field(max_length=200)
    created: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class EnqueuedOut(BaseModel):
    inbox_id: str
    external_event_id: str
    event_type: str
