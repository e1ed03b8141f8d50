from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class PublishResult(BaseModel):
    outcome: Literal["published", "already_online", "declined"]
    listing_id: str
    slot_id: str | None = None
    location_id: str | None = None
    expires_at: datetime | None = None

    # set when declined
    reason: str | None = None
    message: str | None = None


class UnpublishResult(BaseModel):
    outcome: Literal["unpublished", "not_online"]
    listing_id: str
    slot_released: bool = False


class DoNotRenewIn(BaseModel):
    do_not_renew: bool = True


class SlotOut(BaseModel):
    id: str
    listing_id: str
    host_id: str
    status: str
    activated_at: datetime
    expires_at: datetime
    renewal_count: int
    is_past_due: bool
