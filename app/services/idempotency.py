from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.idempotency import ProcessedEvent


async def has_processed(db: AsyncSession, event_id: str) -> bool:
    stmt = select(ProcessedEvent.external_event_id).where(ProcessedEvent.external_event_id == event_id)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def mark_processed(db: AsyncSession, event_id: str, event_type: str) -> None:
    """
    Record the event in the caller's transaction.

    Must be committed together with the business effect. If a concurrent worker
    already committed the same id, the flush raises IntegrityError and the whole
    transaction (effect included) rolls back; the retry then short-circuits.
    """
    db.add(ProcessedEvent(external_event_id=event_id, event_type=event_type))
    # Flush so the primary key is enforced inside this transaction
    await db.flush()
