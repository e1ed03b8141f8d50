import enum


class ListingStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class SlotStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"
    DO_NOT_RENEW = "DO_NOT_RENEW"


# Statuses that hold a listing's visibility and consume plan capacity
LIVE_SLOT_STATUSES = (SlotStatus.ACTIVE, SlotStatus.EXPIRING_SOON, SlotStatus.DO_NOT_RENEW)


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class BillingPeriod(str, enum.Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    YEARLY = "YEARLY"


class LocationType(str, enum.Enum):
    COUNTRY = "COUNTRY"
    PLACE = "PLACE"
    LOCALITY = "LOCALITY"


class InboundEventStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    DROPPED = "dropped"
    DEAD_LETTERED = "dead_lettered"
