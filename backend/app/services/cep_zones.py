"""CEP pricing zone management and matching service."""
from decimal import Decimal
from typing import List, Dict, Any, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.cep import (
    clean_cep,
    is_valid_cep,
    cep_in_ranges,
    parse_ranges_from_text,
    ranges_overlap,
    ranges_to_text,
    whatsapp_contact_url,
)
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.cep_zone import CepZone, EventCepZonePrice
from backend.app.models.event import Event
from backend.app.services.cache import CacheService

logger = get_logger(__name__)


class CepZoneServiceError(ServiceError):
    """Base exception for CEP zone service errors."""


class CepZoneNotFoundError(CepZoneServiceError):
    def __init__(self, zone_id: int):
        super().__init__(f"Zona CEP {zone_id} não encontrada", 404)


class InvalidCepRangesError(CepZoneServiceError):
    def __init__(self):
        super().__init__(
            "Nenhuma faixa de CEP válida encontrada. Use o formato 58083000...58083500, uma faixa por linha"
        )


class CepRangeOverlapError(CepZoneServiceError):
    def __init__(self, cep_range: Dict[str, str], zone_name: str):
        super().__init__(
            f"A faixa {cep_range['start']}...{cep_range['end']} sobrepõe a zona \"{zone_name}\""
        )


class InvalidCepError(CepZoneServiceError):
    def __init__(self, cep: str):
        super().__init__(f"CEP inválido: {cep}")


class CepZoneService:
    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.cache = cache

    # ----- Queries -----

    async def list_zones(self, active_only: bool = False) -> List[Dict[str, Any]]:
        """All zones (or only active ones), ordered by priority."""
        query = select(CepZone).order_by(CepZone.priority, CepZone.id)
        if active_only:
            query = query.where(CepZone.active == True)
        result = await self.session.execute(query)
        return [self._zone_to_dict(z) for z in result.scalars().all()]

    async def get_zone(self, zone_id: int) -> CepZone:
        zone = await self.session.get(CepZone, zone_id)
        if not zone:
            raise CepZoneNotFoundError(zone_id)
        return zone

    async def get_active_zones(self) -> List[Dict[str, Any]]:
        """Active zones in priority order, served from Redis when cached."""
        if self.cache:
            cached = await self.cache.get_active_cep_zones()
            if cached is not None:
                return cached
        zones = await self.list_zones(active_only=True)
        if self.cache:
            await self.cache.set_active_cep_zones(zones)
        return zones

    async def find_zone_for_cep(self, cep: str) -> Optional[Dict[str, Any]]:
        """First active zone (lowest priority number) whose ranges contain the CEP."""
        cleaned = clean_cep(cep)
        for zone in await self.get_active_zones():
            if cep_in_ranges(cleaned, zone["cep_ranges"]):
                return zone
        return None

    async def zone_price_for_event(self, zone: Dict[str, Any], event_id: Optional[int]) -> Decimal:
        """Event-specific override when configured, otherwise the zone's own price."""
        if event_id is not None:
            result = await self.session.execute(
                select(EventCepZonePrice.price).where(
                    EventCepZonePrice.event_id == event_id,
                    EventCepZonePrice.cep_zone_id == zone["id"],
                )
            )
            override = result.scalar_one_or_none()
            if override is not None:
                return Decimal(str(override))
        return Decimal(str(zone["price"]))

    async def check_cep(
        self,
        cep: str,
        event_id: Optional[int] = None,
        event_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Public CEP lookup. Unserved CEPs get a WhatsApp contact link instead of a price."""
        if not is_valid_cep(cep):
            raise InvalidCepError(cep)

        if event_id is not None and not event_name:
            event = await self.session.get(Event, event_id)
            event_name = event.name if event else None

        zone = await self.find_zone_for_cep(cep)
        if zone is None:
            return {
                "found": False,
                "whatsapp_url": whatsapp_contact_url(clean_cep(cep), event_name),
                "message": "CEP não atendido. Entre em contato via WhatsApp.",
            }

        price = await self.zone_price_for_event(zone, event_id)
        return {
            "found": True,
            "zone": {
                "zone_id": zone["id"],
                "zone_name": zone["name"],
                "delivery_cost": float(price),
                "description": zone.get("description"),
            },
        }

    # ----- Admin CRUD -----

    async def create_zone(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ranges = self._parse_ranges(data["ranges_text"])
        await self._check_overlaps(ranges, exclude_zone_id=None)
        zone = CepZone(
            name=data["name"],
            description=data.get("description"),
            cep_ranges=ranges,
            price=data["price"],
            active=data.get("active", True),
            priority=data.get("priority", 1),
        )
        self.session.add(zone)
        await self.session.flush()
        await self._invalidate()
        logger.info("CEP zone created", zone_id=zone.id, name=zone.name, ranges=len(ranges))
        return self._zone_to_dict(zone)

    async def update_zone(self, zone_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        zone = await self.get_zone(zone_id)
        if data.get("ranges_text") is not None:
            ranges = self._parse_ranges(data["ranges_text"])
            await self._check_overlaps(ranges, exclude_zone_id=zone.id)
            zone.cep_ranges = ranges
        for field in ("name", "description", "price", "active", "priority"):
            if data.get(field) is not None:
                setattr(zone, field, data[field])
        await self.session.flush()
        await self._invalidate()
        return self._zone_to_dict(zone)

    async def delete_zone(self, zone_id: int) -> None:
        """Soft delete: the zone stays referenced by past orders."""
        zone = await self.get_zone(zone_id)
        zone.active = False
        await self.session.flush()
        await self._invalidate()
        logger.info("CEP zone deactivated", zone_id=zone_id)

    async def reorder(self, zone_ids: List[int]) -> List[Dict[str, Any]]:
        """Assign priorities 1..n following the given order."""
        for position, zone_id in enumerate(zone_ids, start=1):
            zone = await self.get_zone(zone_id)
            zone.priority = position
        await self.session.flush()
        await self._invalidate()
        return await self.list_zones()

    # ----- Event price overrides -----

    async def list_event_prices(self, event_id: int) -> List[Dict[str, Any]]:
        """Every active zone with its effective price for the event."""
        result = await self.session.execute(
            select(EventCepZonePrice).where(EventCepZonePrice.event_id == event_id)
        )
        overrides = {p.cep_zone_id: p.price for p in result.scalars().all()}
        zones = await self.list_zones(active_only=True)
        return [
            {
                "cep_zone_id": z["id"],
                "zone_name": z["name"],
                "default_price": z["price"],
                "price": float(overrides[z["id"]]) if z["id"] in overrides else z["price"],
                "has_custom_price": z["id"] in overrides,
            }
            for z in zones
        ]

    async def replace_event_prices(self, event_id: int, prices: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace all overrides of an event with the given ``[{"cep_zone_id", "price"}]``."""
        await self.session.execute(
            delete(EventCepZonePrice).where(EventCepZonePrice.event_id == event_id)
        )
        for item in prices:
            await self.get_zone(item["cep_zone_id"])
            self.session.add(EventCepZonePrice(
                event_id=event_id,
                cep_zone_id=item["cep_zone_id"],
                price=item["price"],
            ))
        await self.session.flush()
        logger.info("Event zone prices replaced", event_id=event_id, count=len(prices))
        return await self.list_event_prices(event_id)

    # ----- Helpers -----

    @staticmethod
    def _parse_ranges(text: str) -> List[Dict[str, str]]:
        ranges = parse_ranges_from_text(text)
        if not ranges:
            raise InvalidCepRangesError()
        return ranges

    async def _check_overlaps(self, ranges: List[Dict[str, str]], exclude_zone_id: Optional[int]) -> None:
        result = await self.session.execute(select(CepZone).where(CepZone.active == True))
        for other in result.scalars().all():
            if other.id == exclude_zone_id:
                continue
            for new_range in ranges:
                if any(ranges_overlap(new_range, existing) for existing in other.cep_ranges or []):
                    raise CepRangeOverlapError(new_range, other.name)

    async def _invalidate(self) -> None:
        if self.cache:
            await self.cache.invalidate_cep_zones()

    @staticmethod
    def _zone_to_dict(zone: CepZone) -> Dict[str, Any]:
        return {
            "id": zone.id,
            "name": zone.name,
            "description": zone.description,
            "cep_ranges": zone.cep_ranges or [],
            "ranges_text": ranges_to_text(zone.cep_ranges or []),
            "price": float(zone.price or 0),
            "active": zone.active,
            "priority": zone.priority,
        }
