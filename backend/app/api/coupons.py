"""Public coupon validation."""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache
from backend.app.core.auth import get_optional_customer
from backend.app.core.limiter import limiter
from backend.app.schemas import CouponValidateBody
from backend.app.services.cache import CacheService
from backend.app.services.coupons import CouponService

router = APIRouter()


@router.post("/coupons/validate")
@limiter.limit("20/minute")
async def validate_coupon(
    request: Request,
    data: CouponValidateBody,
    customer_id: Optional[int] = Depends(get_optional_customer),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Check a coupon for an event and amount; the per-customer limit applies when logged in."""
    result = await CouponService(session, cache).validate_coupon(
        data.code, data.event_id, data.total_amount, customer_id=customer_id, zip_code=data.zip_code
    )
    if result["valid"]:
        result["discount"] = float(result["discount"])
        result["final_amount"] = float(result["final_amount"])
    return result
