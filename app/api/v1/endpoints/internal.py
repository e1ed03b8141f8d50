from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.db import get_db, get_sessionmaker
from app.schemas.sweep import ReconcileReport, SweepMode, SweepReport
from app.services import event_queue, expiry_sweep, reconciliation
from app.services.internal_admin import require_internal_admin

router = APIRouter()


class RedriveIn(BaseModel):
    ids: list[str] | None = None


@router.post("/internal/billing-events/dispatch", dependencies=[Depends(require_internal_admin)])
async def internal_dispatch_billing_events(db: AsyncSession = Depends(get_db)) -> dict:
    # imported here so the API process only needs the broker when this is called
    from worker.dispatcher import dispatch_inbox

    count = await dispatch_inbox(db)
    return {"dispatched": count}


@router.get("/internal/billing-events/stats", dependencies=[Depends(require_internal_admin)])
async def internal_billing_event_stats(db: AsyncSession = Depends(get_db)) -> dict:
    return await event_queue.queue_stats(db)


@router.post("/internal/billing-events/redrive", dependencies=[Depends(require_internal_admin)])
async def internal_redrive_dead_letters(payload: RedriveIn, db: AsyncSession = Depends(get_db)) -> dict:
    count = await event_queue.redrive_dead_letters(db, payload.ids)
    await db.commit()
    return {"redriven": count}


@router.post(
    "/internal/sweeps/{mode}",
    response_model=SweepReport,
    dependencies=[Depends(require_internal_admin)],
)
async def internal_run_sweep(
    mode: str,
    Session: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> SweepReport:
    try:
        sweep_mode = SweepMode(mode.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown sweep mode: {mode}")
    return await expiry_sweep.run_sweep(Session, sweep_mode)


@router.post(
    "/internal/locations/reconcile",
    response_model=ReconcileReport,
    dependencies=[Depends(require_internal_admin)],
)
async def internal_reconcile_locations(db: AsyncSession = Depends(get_db)) -> ReconcileReport:
    return await reconciliation.reconcile_location_counts(db)
