from datetime import datetime

from sqlalchemy import Enum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Integer

from app.core.ids import gen_id

from app.models.base import Base, JsonType, UtcDateTime, utcnow
from app.models.enums import InboundEventStatus


class InboundEvent(Base):
    """One delivery of a provider billing event, buffered until a worker applies it."""

    __tablename__ = "billing_event_inbox"
    __table_args__ = (
        Index("ix_billing_event_inbox_status_visible", "status", "visible_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ibx"))

    external_event_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    event_type: Mapped[str | None] = mapped_column(String(200), nullable=True)  # e.g. "invoice.paid"

    payload: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    status: Mapped[InboundEventStatus] = mapped_column(
        Enum(
            InboundEventStatus,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ), nullable=False, default=InboundEventStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # lease == visibility timeout
    lease_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    visible_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False, default=utcnow)

    processing_started_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    dead_lettered_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False, default=utcnow)
