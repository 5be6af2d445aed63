"""Public event catalogue."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error
from backend.app.services.cache import CacheService
from backend.app.services.events import EventService, EventServiceError

router = APIRouter()


@router.get("/events")
async def list_events(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Events open for kit delivery requests."""
    return await EventService(session, cache).list_available()


@router.get("/events/{event_id}")
async def get_event(
    event_id: int,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        event = await EventService(session, cache).get_event(event_id)
    except EventServiceError as e:
        await raise_service_error(session, e)
    return EventService.event_to_dict(event)
