from app.models.base import Base  # noqa: F401

from app.models.subscription_plan import SubscriptionPlan, PlanProduct, PlanPrice  # noqa: F401
from app.models.host_subscription import HostSubscription  # noqa: F401
from app.models.location import Location, LocationName  # noqa: F401
from app.models.listing import Listing, ListingImage  # noqa: F401
from app.models.advertising_slot import AdvertisingSlot  # noqa: F401
from app.models.public_listing import PublicListing, PublicListingMedia  # noqa: F401
from app.models.idempotency import ProcessedEvent  # noqa: F401
from app.models.inbound_event import InboundEvent  # noqa: F401
