"""
Tests for delivery pricing.

Tests cover:
- Cost arithmetic (extra kits, donation, discount floor)
- Fixed-price events
- Distance pricing from the pickup CEP
- CEP zone pricing with per-event overrides
"""
import pytest
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.cep_zone import CepZone, EventCepZonePrice
from backend.app.models.event import Event
from backend.app.services.distance import calculate_delivery_cost, delivery_cost_for_distance
from backend.app.services.pricing import (
    CepZoneNotFoundForPricingError,
    PricingService,
    calculate_costs,
)


# ============================================
# calculate_costs
# ============================================

def test_single_kit_has_no_extra_cost():
    breakdown = calculate_costs(kit_quantity=1, delivery_cost=Decimal("12.00"))
    assert breakdown.extra_kits_cost == Decimal("0.00")
    assert breakdown.total_cost == Decimal("12.00")


def test_extra_kits_charged_after_the_first():
    breakdown = calculate_costs(kit_quantity=3, delivery_cost=Decimal("12.00"), extra_kit_price=Decimal("8.00"))
    assert breakdown.extra_kits_cost == Decimal("16.00")
    assert breakdown.subtotal == Decimal("28.00")


def test_default_extra_kit_price_when_event_has_none():
    breakdown = calculate_costs(kit_quantity=2, delivery_cost=Decimal("10.00"), extra_kit_price=None)
    assert breakdown.extra_kits_cost == Decimal("8.00")


def test_donation_only_when_required():
    optional = calculate_costs(kit_quantity=2, donation_required=False, donation_amount=Decimal("5.00"))
    required = calculate_costs(kit_quantity=2, donation_required=True, donation_amount=Decimal("5.00"))
    assert optional.donation_cost == Decimal("0.00")
    assert required.donation_cost == Decimal("10.00")


@pytest.mark.parametrize("quantity,discount", [(1, "0"), (2, "5.00"), (4, "3.50"), (5, "0")])
def test_fixed_price_total_formula(quantity, discount):
    """fixed price + (quantity - 1) * extra kit price + donation * quantity - discount"""
    fixed_price = Decimal("25.00")
    extra = Decimal("8.00")
    donation = Decimal("2.00")
    breakdown = calculate_costs(
        kit_quantity=quantity,
        base_cost=fixed_price,
        extra_kit_price=extra,
        donation_required=True,
        donation_amount=donation,
        discount=Decimal(discount),
        pricing_type="fixed",
    )
    expected = fixed_price + (quantity - 1) * extra + donation * quantity - Decimal(discount)
    assert breakdown.total_cost == expected
    assert breakdown.delivery_cost == Decimal("0.00")


def test_discount_never_makes_total_negative():
    breakdown = calculate_costs(kit_quantity=1, delivery_cost=Decimal("12.00"), discount=Decimal("50.00"))
    assert breakdown.discount_amount == Decimal("12.00")
    assert breakdown.total_cost == Decimal("0.00")


def test_to_response_uses_floats():
    data = calculate_costs(kit_quantity=2, delivery_cost=Decimal("12.00")).to_response()
    assert data["total_cost"] == 20.0
    assert isinstance(data["delivery_cost"], float)
    assert "calculated_at" in data


# ============================================
# Distance
# ============================================

def test_distance_short_trip_uses_minimum_cost():
    result = calculate_delivery_cost("58000000", "58030000")
    assert result["distance"] == pytest.approx(3.8, abs=0.1)
    assert result["cost"] == Decimal("12.00")
    assert result["estimated"] is False


def test_distance_long_trip_is_capped():
    result = calculate_delivery_cost("58000-000", "58100-000")
    assert result["distance"] == pytest.approx(43.5, abs=0.2)
    assert result["cost"] == Decimal("45.00")


def test_unknown_cep_uses_fallback():
    result = calculate_delivery_cost("58000000", "01310100")
    assert result == {"distance": 12.5, "cost": Decimal("18.50"), "estimated": True}


@pytest.mark.parametrize("km,expected", [(0, "12.00"), (5, "12.00"), (8, "12.50"), (10, "15.50"), (100, "45.00")])
def test_delivery_cost_for_distance(km, expected):
    assert delivery_cost_for_distance(km) == Decimal(expected)


# ============================================
# PricingService.quote
# ============================================

async def test_quote_distance_event(test_session: AsyncSession, test_event: Event):
    breakdown = await PricingService(test_session).quote(test_event, "58030-000", 2)
    assert breakdown.pricing_type == "distance"
    assert breakdown.delivery_cost == Decimal("12.00")
    assert breakdown.extra_kits_cost == Decimal("8.00")
    assert breakdown.total_cost == Decimal("20.00")
    assert breakdown.distance_km == pytest.approx(3.8, abs=0.1)


async def test_quote_fixed_event(test_session: AsyncSession, fixed_event: Event):
    breakdown = await PricingService(test_session).quote(fixed_event, "58030000", 3)
    assert breakdown.pricing_type == "fixed"
    assert breakdown.base_cost == Decimal("25.00")
    assert breakdown.delivery_cost == Decimal("0.00")
    # 25 + 2 * 8 + 3 * 2
    assert breakdown.total_cost == Decimal("47.00")


async def test_quote_cep_zone_event(test_session: AsyncSession, test_event: Event, cep_zone: CepZone):
    test_event.pricing_type = "cep_zones"
    await test_session.commit()

    breakdown = await PricingService(test_session).quote(test_event, "58035123", 1)
    assert breakdown.pricing_type == "cep_zones"
    assert breakdown.delivery_cost == Decimal("15.00")
    assert breakdown.cep_zone_id == cep_zone.id
    assert breakdown.zone_name == "Zona Sul"


async def test_quote_cep_zone_event_override(test_session: AsyncSession, test_event: Event, cep_zone: CepZone):
    test_event.pricing_type = "cep_zones"
    test_session.add(EventCepZonePrice(event_id=test_event.id, cep_zone_id=cep_zone.id, price=Decimal("9.90")))
    await test_session.commit()

    breakdown = await PricingService(test_session).quote(test_event, "58030000", 1)
    assert breakdown.delivery_cost == Decimal("9.90")


async def test_quote_cep_outside_zones(test_session: AsyncSession, test_event: Event, cep_zone: CepZone):
    test_event.pricing_type = "cep_zones"
    await test_session.commit()

    with pytest.raises(CepZoneNotFoundForPricingError) as exc_info:
        await PricingService(test_session).quote(test_event, "58400000", 1)
    detail = exc_info.value.to_detail()
    assert detail["code"] == "CEP_ZONE_NOT_FOUND"
    assert detail["whatsapp_url"].startswith("https://wa.me/")


async def test_quote_zone_lookup_uses_cache(
    test_session: AsyncSession, test_event: Event, cep_zone: CepZone, mock_cache
):
    test_event.pricing_type = "cep_zones"
    await test_session.commit()

    service = PricingService(test_session, mock_cache)
    await service.quote(test_event, "58030000", 1)
    cached = await mock_cache.get_active_cep_zones()
    assert cached and cached[0]["id"] == cep_zone.id
