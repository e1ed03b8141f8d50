import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.models.enums import InboundEventStatus
from app.models.inbound_event import InboundEvent
from app.schemas.sweep import SweepMode
from app.services import billing_events, expiry_sweep, reconciliation


log = logging.getLogger(__name__)


async def process_leased_event(Session: async_sessionmaker[AsyncSession], inbox_id: str, lease_id: str) -> str:
    async with Session() as db:
        ev = (await db.execute(select(InboundEvent).where(InboundEvent.id == inbox_id))).scalar_one_or_none()
        if not ev:
            return "missing"

        # Lease ownership check
        if ev.lease_id != lease_id or ev.status != InboundEventStatus.PROCESSING:
            # Another dispatcher reclaimed it or it's already settled.
            return billing_events.LEASE_LOST

        return await billing_events.handle_inbox_message(db, ev, lease_id)


async def _process_billing_event(inbox_id: str, lease_id: str) -> str:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        outcome = await process_leased_event(Session, inbox_id, lease_id)
    finally:
        await engine.dispose()
    log.info("process_billing_event %s -> %s", inbox_id, outcome)
    return outcome


async def _run_slot_sweep(mode: str) -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        report = await expiry_sweep.run_sweep(Session, SweepMode(mode))
    finally:
        await engine.dispose()
    return report.model_dump(mode="json")


async def _reconcile_locations() -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with Session() as db:
            report = await reconciliation.reconcile_location_counts(db)
    finally:
        await engine.dispose()
    return report.model_dump(mode="json")


# Retries are owned by the inbox (nack/backoff/dead-letter), not by Celery.
@celery.task(name="worker.tasks.process_billing_event", bind=True, max_retries=0)
def process_billing_event(self, inbox_id: str, lease_id: str) -> str:
    return asyncio.run(_process_billing_event(inbox_id, lease_id))


@celery.task(name="worker.tasks.run_slot_sweep")
def run_slot_sweep(mode: str) -> dict:
    return asyncio.run(_run_slot_sweep(mode))


@celery.task(name="worker.tasks.reconcile_locations")
def reconcile_locations() -> dict:
    return asyncio.run(_reconcile_locations())
