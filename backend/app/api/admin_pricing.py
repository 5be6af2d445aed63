"""Back-office management of CEP pricing zones and per-event zone prices."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error
from backend.app.core.auth import AdminPrincipal, require_admin
from backend.app.core.exceptions import ServiceError
from backend.app.schemas import CepZoneCreate, CepZoneReorderBody, CepZoneUpdate, EventZonePricesBody
from backend.app.services.cache import CacheService
from backend.app.services.cep_zones import CepZoneService
from backend.app.services.events import EventService

router = APIRouter()


@router.get("/cep-zones")
async def list_cep_zones(
    active_only: bool = False,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    return await CepZoneService(session, cache).list_zones(active_only=active_only)


@router.post("/cep-zones", status_code=201)
async def create_cep_zone(
    data: CepZoneCreate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Ranges come as text, one ``start...end`` pair per line."""
    try:
        result = await CepZoneService(session, cache).create_zone(data.model_dump())
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.put("/cep-zones/reorder")
async def reorder_cep_zones(
    data: CepZoneReorderBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await CepZoneService(session, cache).reorder(data.zone_ids)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.put("/cep-zones/{zone_id}")
async def update_cep_zone(
    zone_id: int,
    data: CepZoneUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await CepZoneService(session, cache).update_zone(zone_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.delete("/cep-zones/{zone_id}")
async def delete_cep_zone(
    zone_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        await CepZoneService(session, cache).delete_zone(zone_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}


@router.get("/events/{event_id}/cep-zone-prices")
async def get_event_zone_prices(
    event_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        await EventService(session, cache).get_event(event_id)
    except ServiceError as e:
        await raise_service_error(session, e)
    return await CepZoneService(session, cache).list_event_prices(event_id)


@router.put("/events/{event_id}/cep-zone-prices")
async def replace_event_zone_prices(
    event_id: int,
    data: EventZonePricesBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = CepZoneService(session, cache)
    try:
        await EventService(session, cache).get_event(event_id)
        result = await service.replace_event_prices(event_id, [p.model_dump() for p in data.prices])
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result
