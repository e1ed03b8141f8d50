from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, UtcDateTime, utcnow


class ProcessedEvent(Base):
    """Idempotency ledger: provider event ids whose business effect has been applied."""

    __tablename__ = "processed_events"

    external_event_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(200), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False, default=utcnow)
