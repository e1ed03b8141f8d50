from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.billing_events import EnqueuedOut, EventEnvelopeIn
from app.services.event_queue import enqueue_event

router = APIRouter()


@router.post("/billing/events", response_model=EnqueuedOut, status_code=202)
async def receive_billing_event(payload: EventEnvelopeIn, db: AsyncSession = Depends(get_db)) -> EnqueuedOut:
    # buffered only; the worker parses and applies it
    row = await enqueue_event(db, payload.model_dump())
    await db.commit()
    return EnqueuedOut(inbox_id=row.id, external_event_id=payload.id, event_type=payload.type)
