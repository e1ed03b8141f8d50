from enum import Enum

from pydantic import BaseModel, Field


class SweepMode(str, Enum):
    EXPIRY_WARNING = "EXPIRY_WARNING"
    SLOT_EXPIRY = "SLOT_EXPIRY"


class SweepFailure(BaseModel):
    slot_id: str
    error: str


class SweepReport(BaseModel):
    mode: SweepMode
    examined: int = 0
    transitioned: int = 0
    unpublished: int = 0
    deferred: int = 0
    notified_hosts: int = 0
    failures: list[SweepFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ReconcileReport(BaseModel):
    locations_checked: int = 0
    corrections: dict[str, tuple[int, int]] = Field(default_factory=dict)  # location_id -> (stored, actual)
