import hmac

from fastapi import Header, HTTPException

from app.core.config import settings


async def require_internal_admin(x_internal_admin_key: str | None = Header(default=None)) -> None:
    """Guards the operator endpoints (dispatch, sweeps, redrive, reconcile)."""
    expected = settings.internal_admin_key
    if not x_internal_admin_key or not expected or not hmac.compare_digest(x_internal_admin_key, expected):
        raise HTTPException(status_code=403, detail="Internal admin key required")
