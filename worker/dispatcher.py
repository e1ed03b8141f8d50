import asyncio
import logging
from typing import Callable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.models.enums import InboundEventStatus
from app.models.inbound_event import InboundEvent
from app.services import event_queue
from worker.celery_app import celery


log = logging.getLogger(__name__)

Send = Callable[[str, str], None]


def _send_to_celery(inbox_id: str, lease_id: str) -> None:
    celery.send_task("worker.tasks.process_billing_event", args=[inbox_id, lease_id], queue="billing")


async def dispatch_inbox(db: AsyncSession, send: Send = _send_to_celery, batch_size: int | None = None) -> int:
    lease_id, ids = await event_queue.claim_batch(db, batch_size=batch_size)

    # Commit before enqueue so workers can read status/rows
    await db.commit()

    if not ids:
        return 0

    failed: list[tuple[str, str]] = []
    dispatched = 0
    for inbox_id in ids:
        try:
            send(inbox_id, lease_id)
            dispatched += 1
        except Exception as e:
            failed.append((inbox_id, f"{type(e).__name__}: {e}"))

    # broker refused: hand the rows back without burning an attempt
    if failed:
        log.warning("dispatcher: %d of %d sends failed", len(failed), len(ids))
        for inbox_id, msg in failed:
            await db.execute(
                update(InboundEvent)
                .where(InboundEvent.id == inbox_id, InboundEvent.lease_id == lease_id)
                .values(
                    status=InboundEventStatus.PENDING,
                    attempts=InboundEvent.attempts - 1,
                    lease_id=None,
                    lease_expires_at=None,
                    processing_started_at=None,
                    last_error=f"enqueue failed: {msg}",
                )
                .execution_options(synchronize_session=False)
            )
        await db.commit()

    return dispatched


def next_poll_delay(current: float, dispatched: int) -> float:
    """Back off while the inbox is idle, snap back as soon as there is work."""
    if dispatched:
        return settings.dispatcher_poll_seconds
    return min(settings.dispatcher_idle_max_seconds, current * 2)


async def _tick(Session: async_sessionmaker[AsyncSession]) -> int:
    async with Session() as db:
        return await dispatch_inbox(db)


async def main():
    celery.connection().ensure_connection(max_retries=3)

    logging.basicConfig(level=logging.INFO)
    log.info("dispatcher: started")

    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    delay = settings.dispatcher_poll_seconds
    try:
        while True:
            dispatched = 0
            try:
                dispatched = await _tick(Session)
                if dispatched:
                    log.info("dispatcher: dispatched %d events", dispatched)
            except Exception:
                log.exception("dispatcher: tick crashed")
            delay = next_poll_delay(delay, dispatched)
            await asyncio.sleep(delay)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
