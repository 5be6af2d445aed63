"""
Delivery pricing for an event + destination CEP + kit quantity.

Resolution order per event:
  1. ``cep_zones`` pricing: the zone containing the CEP sets the delivery cost
     (event override first). A CEP outside every zone cannot be quoted.
  2. A fixed price: the whole service costs ``fixed_price``; no delivery cost.
  3. Otherwise distance pricing from the event's pickup CEP.

Extra kits and the mandatory donation are added on top, the discount is
subtracted and the total never goes below zero.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.cep import clean_cep, whatsapp_contact_url
from backend.app.core.constants import (
    DEFAULT_EXTRA_KIT_PRICE,
    DEFAULT_PICKUP_ZIP_CODE,
    PRICING_CEP_ZONES,
    PRICING_DISTANCE,
    PRICING_FIXED,
    ZERO,
)
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.event import Event
from backend.app.services.cache import CacheService
from backend.app.services.cep_zones import CepZoneService
from backend.app.services.distance import calculate_delivery_cost

logger = get_logger(__name__)

CENTS = Decimal("0.01")


class PricingServiceError(ServiceError):
    """Base exception for pricing errors."""


class CepZoneNotFoundForPricingError(PricingServiceError):
    def __init__(self, zip_code: str, event_name: Optional[str] = None):
        super().__init__(
            "CEP não atendido pelas zonas de entrega. Entre em contato via WhatsApp.",
            400,
            code="CEP_ZONE_NOT_FOUND",
            zip_code=zip_code,
            whatsapp_url=whatsapp_contact_url(zip_code, event_name),
        )


class PriceBreakdown(BaseModel):
    pricing_type: str
    base_cost: Decimal = ZERO
    delivery_cost: Decimal = ZERO
    extra_kits_cost: Decimal = ZERO
    donation_cost: Decimal = ZERO
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_cost: Decimal = ZERO
    kit_quantity: int = 1
    cep_zone_id: Optional[int] = None
    zone_name: Optional[str] = None
    distance_km: Optional[float] = None

    def with_discount(self, discount: Decimal) -> "PriceBreakdown":
        discount = _money(max(ZERO, min(discount, self.subtotal)))
        return self.model_copy(update={
            "discount_amount": discount,
            "total_cost": _money(max(ZERO, self.subtotal - discount)),
        })

    def to_response(self) -> Dict[str, Any]:
        return {
            "pricing_type": self.pricing_type,
            "base_cost": float(self.base_cost),
            "delivery_cost": float(self.delivery_cost),
            "extra_kits_cost": float(self.extra_kits_cost),
            "donation_cost": float(self.donation_cost),
            "subtotal": float(self.subtotal),
            "discount_amount": float(self.discount_amount),
            "total_cost": float(self.total_cost),
            "kit_quantity": self.kit_quantity,
            "cep_zone_id": self.cep_zone_id,
            "zone_name": self.zone_name,
            "distance_km": self.distance_km,
            "calculated_at": datetime.utcnow().isoformat(),
        }


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_costs(
    kit_quantity: int,
    base_cost: Decimal = ZERO,
    delivery_cost: Decimal = ZERO,
    extra_kit_price: Optional[Decimal] = None,
    donation_required: bool = False,
    donation_amount: Optional[Decimal] = None,
    discount: Decimal = ZERO,
    pricing_type: str = PRICING_DISTANCE,
) -> PriceBreakdown:
    """Pure cost arithmetic, shared by quotes and orders."""
    if extra_kit_price is None:
        extra_kit_price = DEFAULT_EXTRA_KIT_PRICE
    extra_kits_cost = Decimal(max(0, kit_quantity - 1)) * Decimal(extra_kit_price)
    donation_cost = ZERO
    if donation_required and donation_amount:
        donation_cost = Decimal(donation_amount) * kit_quantity
    subtotal = Decimal(base_cost) + Decimal(delivery_cost) + extra_kits_cost + donation_cost
    breakdown = PriceBreakdown(
        pricing_type=pricing_type,
        base_cost=_money(base_cost),
        delivery_cost=_money(delivery_cost),
        extra_kits_cost=_money(extra_kits_cost),
        donation_cost=_money(donation_cost),
        subtotal=_money(subtotal),
        total_cost=_money(subtotal),
        kit_quantity=kit_quantity,
    )
    return breakdown.with_discount(discount)


class PricingService:
    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.zones = CepZoneService(session, cache)

    async def quote(
        self,
        event: Event,
        zip_code: str,
        kit_quantity: int,
        discount: Decimal = ZERO,
    ) -> PriceBreakdown:
        """
        Recompute the price of delivering ``kit_quantity`` kits of ``event`` to ``zip_code``.

        Raises:
            CepZoneNotFoundForPricingError: zone pricing and the CEP is outside every active zone
        """
        zip_code = clean_cep(zip_code)
        base_cost = ZERO
        delivery_cost = ZERO
        cep_zone_id = None
        zone_name = None
        distance_km = None

        if event.pricing_type == PRICING_CEP_ZONES:
            zone = await self.zones.find_zone_for_cep(zip_code)
            if zone is None:
                logger.info("CEP outside delivery zones", zip_code=zip_code, event_id=event.id)
                raise CepZoneNotFoundForPricingError(zip_code, event.name)
            delivery_cost = await self.zones.zone_price_for_event(zone, event.id)
            cep_zone_id = zone["id"]
            zone_name = zone["name"]
            pricing_type = PRICING_CEP_ZONES
        elif event.fixed_price is not None:
            base_cost = Decimal(event.fixed_price)
            pricing_type = PRICING_FIXED
        else:
            origin = event.pickup_zip_code or DEFAULT_PICKUP_ZIP_CODE
            result = calculate_delivery_cost(origin, zip_code)
            delivery_cost = result["cost"]
            distance_km = result["distance"]
            pricing_type = PRICING_DISTANCE

        breakdown = calculate_costs(
            kit_quantity=kit_quantity,
            base_cost=base_cost,
            delivery_cost=delivery_cost,
            extra_kit_price=event.extra_kit_price,
            donation_required=bool(event.donation_required),
            donation_amount=event.donation_amount,
            discount=discount,
            pricing_type=pricing_type,
        )
        return breakdown.model_copy(update={
            "cep_zone_id": cep_zone_id,
            "zone_name": zone_name,
            "distance_km": distance_km,
        })
