"""Delivery price quotes and public CEP coverage checks."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error
from backend.app.core.auth import get_current_customer
from backend.app.core.cep import is_valid_cep
from backend.app.core.exceptions import ServiceError
from backend.app.core.limiter import limiter
from backend.app.schemas import CepCheckBody, DeliveryCalculateBody
from backend.app.services.cache import CacheService
from backend.app.services.cep_zones import CepZoneService
from backend.app.services.events import EventService
from backend.app.services.orders import OrderService

router = APIRouter()


@router.post("/delivery/calculate")
@limiter.limit("30/minute")
async def calculate_delivery(
    request: Request,
    data: DeliveryCalculateBody,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Price breakdown for an event, one of the customer's addresses and a kit quantity."""
    try:
        _, _, breakdown = await OrderService(session, cache).price_order(
            customer_id, data.event_id, data.address_id, data.kit_quantity
        )
    except ServiceError as e:
        await raise_service_error(session, e)
    return breakdown.to_response()


async def _check(session: AsyncSession, cache: CacheService, zip_code: str, event_id: Optional[int]):
    if not is_valid_cep(zip_code):
        raise HTTPException(status_code=400, detail="CEP inválido")
    event_name = None
    if event_id:
        try:
            event_name = (await EventService(session, cache).get_event(event_id)).name
        except ServiceError as e:
            await raise_service_error(session, e)
    return await CepZoneService(session, cache).check_cep(zip_code, event_id=event_id, event_name=event_name)


@router.post("/cep-zones/check")
@limiter.limit("60/minute")
async def check_cep(
    request: Request,
    data: CepCheckBody,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    return await _check(session, cache, data.zip_code, data.event_id)


@router.get("/cep-zones/check/{zip_code}")
@limiter.limit("60/minute")
async def check_cep_get(
    request: Request,
    zip_code: str,
    event_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    return await _check(session, cache, zip_code, event_id)
