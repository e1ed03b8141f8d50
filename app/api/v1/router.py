from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.billing_events import router as billing_events_router
from app.api.v1.endpoints.listings import router as listings_router
from app.api.v1.endpoints.internal import router as internal_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(billing_events_router, tags=["billing"])
router.include_router(listings_router, tags=["listings"])
router.include_router(internal_router, tags=["internal"])
