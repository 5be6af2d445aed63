"""Event catalog service."""
from typing import List, Dict, Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.cep import clean_cep
from backend.app.core.constants import PRICING_DISTANCE, PRICING_FIXED, PRICING_TYPES
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.event import Event
from backend.app.models.order import Order
from backend.app.services.cache import CacheService

logger = get_logger(__name__)

EVENT_FIELDS = (
    "name", "date", "location", "city", "state", "pickup_zip_code", "pricing_type",
    "fixed_price", "extra_kit_price", "donation_required", "donation_amount",
    "donation_description", "available",
)


class EventServiceError(ServiceError):
    """Base exception for event service errors."""


class EventNotFoundError(EventServiceError):
    def __init__(self, event_id: int):
        super().__init__(f"Evento {event_id} não encontrado", 404)


class EventUnavailableError(EventServiceError):
    def __init__(self, event_id: int):
        super().__init__(f"Evento {event_id} não está disponível para pedidos", 400)


class EventHasOrdersError(EventServiceError):
    def __init__(self, event_id: int, orders: int):
        super().__init__(
            f"Não é possível excluir o evento {event_id}: existem {orders} pedido(s) vinculados", 409
        )


class InvalidEventConfigError(EventServiceError):
    pass


class EventService:
    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.cache = cache

    async def list_available(self) -> List[Dict[str, Any]]:
        if self.cache:
            cached = await self.cache.get_available_events()
            if cached is not None:
                return cached
        result = await self.session.execute(
            select(Event).where(Event.available == True).order_by(Event.date, Event.id)
        )
        events = [self.event_to_dict(e) for e in result.scalars().all()]
        if self.cache:
            await self.cache.set_available_events(events)
        return events

    async def list_all(self) -> List[Dict[str, Any]]:
        """Admin listing with order counts."""
        counts = (
            select(Order.event_id, func.count(Order.id).label("orders_count"))
            .group_by(Order.event_id)
            .subquery()
        )
        result = await self.session.execute(
            select(Event, func.coalesce(counts.c.orders_count, 0))
            .outerjoin(counts, counts.c.event_id == Event.id)
            .order_by(Event.date.desc(), Event.id.desc())
        )
        events = []
        for event, orders_count in result.all():
            data = self.event_to_dict(event)
            data["orders_count"] = int(orders_count)
            events.append(data)
        return events

    async def get_event(self, event_id: int) -> Event:
        event = await self.session.get(Event, event_id)
        if not event:
            raise EventNotFoundError(event_id)
        return event

    async def get_available_event(self, event_id: int) -> Event:
        event = await self.get_event(event_id)
        if not event.available:
            raise EventUnavailableError(event_id)
        return event

    async def create_event(self, data: Dict[str, Any]) -> Dict[str, Any]:
        values = {k: data[k] for k in EVENT_FIELDS if data.get(k) is not None}
        if "pickup_zip_code" in values:
            values["pickup_zip_code"] = clean_cep(values["pickup_zip_code"])
        # Column defaults only apply on INSERT; validation needs them now
        values.setdefault("pricing_type", PRICING_DISTANCE)
        values.setdefault("donation_required", False)
        event = Event(**values)
        self._validate(event)
        self.session.add(event)
        await self.session.flush()
        await self._invalidate()
        logger.info("Event created", event_id=event.id, name=event.name, pricing_type=event.pricing_type)
        return self.event_to_dict(event)

    async def update_event(self, event_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        event = await self.get_event(event_id)
        for field in EVENT_FIELDS:
            if field in data:
                value = data[field]
                if field == "pickup_zip_code" and value:
                    value = clean_cep(value)
                setattr(event, field, value)
        self._validate(event)
        await self.session.flush()
        await self._invalidate()
        return self.event_to_dict(event)

    async def toggle_availability(self, event_id: int) -> Dict[str, Any]:
        event = await self.get_event(event_id)
        event.available = not event.available
        await self.session.flush()
        await self._invalidate()
        logger.info("Event availability toggled", event_id=event_id, available=event.available)
        return self.event_to_dict(event)

    async def delete_event(self, event_id: int) -> None:
        event = await self.get_event(event_id)
        orders = await self.session.scalar(
            select(func.count(Order.id)).where(Order.event_id == event_id)
        )
        if orders:
            raise EventHasOrdersError(event_id, orders)
        await self.session.delete(event)
        await self.session.flush()
        await self._invalidate()
        logger.info("Event deleted", event_id=event_id)

    @staticmethod
    def _validate(event: Event) -> None:
        if event.pricing_type not in PRICING_TYPES:
            raise InvalidEventConfigError(f"Tipo de precificação inválido: {event.pricing_type}")
        if event.pricing_type == PRICING_FIXED and event.fixed_price is None:
            raise InvalidEventConfigError("Preço fixo é obrigatório para eventos com precificação fixa")
        if event.donation_required and not event.donation_amount:
            raise InvalidEventConfigError("Valor da doação é obrigatório quando a doação é exigida")

    async def _invalidate(self) -> None:
        if self.cache:
            await self.cache.invalidate_events()

    @staticmethod
    def event_to_dict(event: Event) -> Dict[str, Any]:
        return {
            "id": event.id,
            "name": event.name,
            "date": event.date.isoformat() if event.date else None,
            "location": event.location,
            "city": event.city,
            "state": event.state,
            "pickup_zip_code": event.pickup_zip_code,
            "pricing_type": event.pricing_type,
            "fixed_price": float(event.fixed_price) if event.fixed_price is not None else None,
            "extra_kit_price": float(event.extra_kit_price) if event.extra_kit_price is not None else None,
            "donation_required": bool(event.donation_required),
            "donation_amount": float(event.donation_amount) if event.donation_amount is not None else None,
            "donation_description": event.donation_description,
            "available": bool(event.available),
            "created_at": event.created_at.isoformat() if event.created_at else None,
        }
