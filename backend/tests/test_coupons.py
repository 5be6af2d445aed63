"""
Tests for discount coupons.

Tests cover:
- Discount math (fixed, percentage, max_discount cap)
- Validation rules in order: existence, active, dates, usage, event, zone, customer limit
- Redemption recording
- Public validation endpoint
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.coupon import Coupon, CouponUsage
from backend.app.services.coupons import (
    CouponService,
    InvalidCouponDataError,
    InvalidCouponError,
    MSG_APPLIED,
    MSG_CUSTOMER_LIMIT,
    MSG_EXHAUSTED,
    MSG_EXPIRED,
    MSG_INACTIVE,
    MSG_NOT_FOUND,
    MSG_NOT_YET_VALID,
    MSG_WRONG_EVENT,
    MSG_WRONG_ZONE,
    MSG_ZIP_REQUIRED,
    calculate_discount,
    parse_coupon_datetime,
)
from backend.tests.conftest import TestSessionLocal, customer_auth_header


# ============================================
# Discount math
# ============================================

def test_fixed_discount_never_exceeds_total():
    assert calculate_discount("fixed", Decimal("10"), Decimal("25.00")) == Decimal("10.00")
    assert calculate_discount("fixed", Decimal("50"), Decimal("25.00")) == Decimal("25.00")


def test_percentage_discount():
    assert calculate_discount("percentage", Decimal("10"), Decimal("37.00")) == Decimal("3.70")
    assert calculate_discount("percentage", Decimal("15"), Decimal("12.33")) == Decimal("1.85")


@pytest.mark.parametrize("total", ["10.00", "50.00", "100.00", "1000.00"])
def test_percentage_discount_respects_max_discount(total):
    discount = calculate_discount("percentage", Decimal("20"), Decimal(total), Decimal("15.00"))
    assert discount <= Decimal("15.00")
    assert discount <= Decimal(total)


def test_unknown_discount_type_gives_nothing():
    assert calculate_discount("bogus", Decimal("10"), Decimal("50")) == Decimal("0.00")


def test_parse_coupon_dates_are_sao_paulo_local():
    start = parse_coupon_datetime("2026-03-01")
    end = parse_coupon_datetime("2026-03-01", end_of_day=True)
    assert start == datetime(2026, 3, 1, 3, 0, 0)
    assert end == datetime(2026, 3, 2, 2, 59, 59)


def test_parse_coupon_date_rejects_garbage():
    with pytest.raises(InvalidCouponDataError):
        parse_coupon_datetime("amanhã")


# ============================================
# validate_coupon
# ============================================

async def test_validate_applies_discount(test_session: AsyncSession, test_event, make_coupon):
    await make_coupon()
    result = await CouponService(test_session).validate_coupon("CORRIDA10", test_event.id, Decimal("40.00"))
    assert result["valid"] is True
    assert result["message"] == MSG_APPLIED
    assert result["discount"] == Decimal("4.00")
    assert result["final_amount"] == Decimal("36.00")
    assert result["coupon"]["code"] == "CORRIDA10"


async def test_validate_is_case_insensitive(test_session: AsyncSession, test_event, make_coupon):
    await make_coupon("CORRIDA10")
    result = await CouponService(test_session).validate_coupon(" corrida10 ", test_event.id, Decimal("40"))
    assert result["valid"] is True


async def test_validate_unknown_code(test_session: AsyncSession, test_event):
    result = await CouponService(test_session).validate_coupon("NOPE", test_event.id, Decimal("40"))
    assert result == {"valid": False, "message": MSG_NOT_FOUND}


@pytest.mark.parametrize("overrides,message", [
    ({"active": False}, MSG_INACTIVE),
    ({"valid_until": datetime.utcnow() - timedelta(hours=1)}, MSG_EXPIRED),
    ({"valid_from": datetime.utcnow() + timedelta(days=1)}, MSG_NOT_YET_VALID),
    ({"usage_limit": 5, "usage_count": 5}, MSG_EXHAUSTED),
])
async def test_validate_rejections(test_session: AsyncSession, test_event, make_coupon, overrides, message):
    await make_coupon(**overrides)
    result = await CouponService(test_session).validate_coupon("CORRIDA10", test_event.id, Decimal("40"))
    assert result["valid"] is False
    assert result["message"] == message


async def test_validate_inactive_checked_before_expiry(test_session: AsyncSession, test_event, make_coupon):
    await make_coupon(active=False, valid_until=datetime.utcnow() - timedelta(days=1))
    result = await CouponService(test_session).validate_coupon("CORRIDA10", test_event.id, Decimal("40"))
    assert result["message"] == MSG_INACTIVE


async def test_validate_event_restriction(test_session: AsyncSession, test_event, fixed_event, make_coupon):
    await make_coupon(event_ids=[fixed_event.id])
    service = CouponService(test_session)
    wrong = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"))
    right = await service.validate_coupon("CORRIDA10", fixed_event.id, Decimal("40"))
    assert wrong["message"] == MSG_WRONG_EVENT
    assert right["valid"] is True


async def test_validate_zone_restriction(test_session: AsyncSession, test_event, cep_zone, make_coupon):
    await make_coupon(cep_zone_ids=[cep_zone.id])
    service = CouponService(test_session)

    missing = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"))
    outside = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"), zip_code="58400000")
    inside = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"), zip_code="58031-000")

    assert missing["message"] == MSG_ZIP_REQUIRED
    assert outside["message"] == MSG_WRONG_ZONE
    assert inside["valid"] is True


async def test_validate_per_customer_limit(
    test_session: AsyncSession, test_event, test_customer, test_address, make_coupon, make_order
):
    coupon = await make_coupon(per_customer_limit=1)
    order = await make_order(test_event, test_customer, test_address, coupon_code="CORRIDA10")
    test_session.add(CouponUsage(
        coupon_id=coupon.id, customer_id=test_customer.id, order_id=order.id, discount_amount=Decimal("1.20"),
    ))
    await test_session.commit()

    service = CouponService(test_session)
    limited = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"), customer_id=test_customer.id)
    anonymous = await service.validate_coupon("CORRIDA10", test_event.id, Decimal("40"))
    assert limited["message"] == MSG_CUSTOMER_LIMIT
    assert anonymous["valid"] is True


async def test_discount_for_order_raises_on_invalid(test_session: AsyncSession, test_event, test_customer):
    with pytest.raises(InvalidCouponError) as exc_info:
        await CouponService(test_session).discount_for_order(
            "NOPE", test_event.id, Decimal("40"), test_customer.id, "58030000"
        )
    assert exc_info.value.to_detail()["code"] == "INVALID_COUPON"


# ============================================
# record_usage
# ============================================

async def test_record_usage_once_per_order(
    test_session: AsyncSession, test_event, test_customer, test_address, make_coupon, make_order
):
    coupon = await make_coupon()
    order = await make_order(
        test_event, test_customer, test_address, coupon_code="CORRIDA10", discount_amount=Decimal("1.20"),
    )

    async with TestSessionLocal() as session:
        service = CouponService(session)
        assert await service.record_usage(order) is True
        assert await service.record_usage(order) is False
        await session.commit()

    async with TestSessionLocal() as session:
        refreshed = await session.get(Coupon, coupon.id)
        usages = await session.scalar(select(func.count(CouponUsage.id)))
        assert refreshed.usage_count == 1
        assert usages == 1


async def test_record_usage_stops_at_usage_limit(
    test_session: AsyncSession, test_event, test_customer, test_address, make_coupon, make_order
):
    """Two pending orders validated the last redemption; only the first confirmation counts."""
    coupon = await make_coupon(usage_limit=1)
    first = await make_order(test_event, test_customer, test_address, coupon_code="CORRIDA10")
    second = await make_order(test_event, test_customer, test_address, coupon_code="CORRIDA10")

    async with TestSessionLocal() as session:
        service = CouponService(session)
        assert await service.record_usage(first) is True
        assert await service.record_usage(second) is False
        await session.commit()

    async with TestSessionLocal() as session:
        refreshed = await session.get(Coupon, coupon.id)
        usages = (await session.execute(select(CouponUsage.order_id))).scalars().all()
        assert refreshed.usage_count == 1
        assert usages == [first.id]


async def test_record_usage_without_coupon(test_session: AsyncSession, test_order):
    assert await CouponService(test_session).record_usage(test_order) is False


# ============================================
# Admin CRUD
# ============================================

async def test_create_coupon_rejects_bad_percentage(test_session: AsyncSession):
    with pytest.raises(InvalidCouponDataError):
        await CouponService(test_session).create_coupon({
            "code": "MUITO",
            "discount_type": "percentage",
            "discount_value": Decimal("150"),
            "valid_from": "2026-01-01",
            "valid_until": "2026-12-31",
        })


async def test_create_coupon_rejects_inverted_dates(test_session: AsyncSession):
    with pytest.raises(InvalidCouponDataError):
        await CouponService(test_session).create_coupon({
            "code": "DATAS",
            "discount_type": "fixed",
            "discount_value": Decimal("5"),
            "valid_from": "2026-12-31",
            "valid_until": "2026-01-01",
        })


# ============================================
# API
# ============================================

@pytest.mark.asyncio
async def test_validate_endpoint(client: AsyncClient, test_event, make_coupon):
    await make_coupon(discount_type="fixed", discount_value=Decimal("5.00"))
    response = await client.post("/api/coupons/validate", json={
        "code": "corrida10",
        "event_id": test_event.id,
        "total_amount": 20.0,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["discount"] == 5.0
    assert data["final_amount"] == 15.0


@pytest.mark.asyncio
async def test_validate_endpoint_applies_customer_limit(
    client: AsyncClient, test_session: AsyncSession, test_event, test_customer, test_address, make_coupon, make_order
):
    coupon = await make_coupon(per_customer_limit=1)
    order = await make_order(test_event, test_customer, test_address, coupon_code="CORRIDA10")
    test_session.add(CouponUsage(
        coupon_id=coupon.id, customer_id=test_customer.id, order_id=order.id, discount_amount=Decimal("1.20"),
    ))
    await test_session.commit()

    response = await client.post(
        "/api/coupons/validate",
        json={"code": "CORRIDA10", "event_id": test_event.id, "total_amount": 20.0},
        headers=customer_auth_header(test_customer.id),
    )
    assert response.status_code == 200
    assert response.json() == {"valid": False, "message": MSG_CUSTOMER_LIMIT}
