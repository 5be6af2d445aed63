"""Discount coupons: validation, discount math, redemption and admin CRUD."""
from datetime import datetime, date, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Optional, Union

from sqlalchemy import select, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, PERCENT_BASE, ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import coupon_redemptions_total
from backend.app.models.coupon import Coupon, CouponUsage
from backend.app.models.order import Order
from backend.app.services.cache import CacheService
from backend.app.services.cep_zones import CepZoneService

logger = get_logger(__name__)

# America/Sao_Paulo has had no DST since 2019
SAO_PAULO_TZ = timezone(timedelta(hours=-3))

COUPON_FIELDS = (
    "description", "discount_type", "discount_value", "max_discount", "usage_limit",
    "per_customer_limit", "event_ids", "cep_zone_ids", "active",
)

MSG_NOT_FOUND = "Cupom não encontrado"
MSG_INACTIVE = "Cupom inativo"
MSG_EXPIRED = "Cupom expirado"
MSG_NOT_YET_VALID = "Cupom ainda não está válido"
MSG_EXHAUSTED = "Cupom esgotado"
MSG_WRONG_EVENT = "Cupom não é válido para este evento"
MSG_ZIP_REQUIRED = "Informe o CEP de entrega para validar este cupom"
MSG_WRONG_ZONE = "Cupom não é válido para sua região"
MSG_CUSTOMER_LIMIT = "Você já atingiu o limite de uso deste cupom"
MSG_APPLIED = "Cupom aplicado com sucesso!"


class CouponServiceError(ServiceError):
    """Base exception for coupon service errors."""


class CouponNotFoundError(CouponServiceError):
    def __init__(self, coupon_id: int):
        super().__init__(f"Cupom {coupon_id} não encontrado", 404)


class CouponCodeExistsError(CouponServiceError):
    def __init__(self, code: str):
        super().__init__(f"Já existe um cupom com o código {code}", 409)


class InvalidCouponError(CouponServiceError):
    """Raised when an order carries a coupon that does not validate."""

    def __init__(self, message: str):
        super().__init__(message, 400, code="INVALID_COUPON")


class InvalidCouponDataError(CouponServiceError):
    pass


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def calculate_discount(
    discount_type: str,
    discount_value: Decimal,
    total_amount: Decimal,
    max_discount: Optional[Decimal] = None,
) -> Decimal:
    """
    Discount a coupon grants on ``total_amount``.

    Fixed discounts never exceed the total; percentage discounts are capped by
    ``max_discount`` when set.
    """
    total_amount = Decimal(total_amount)
    value = Decimal(discount_value)
    if discount_type == DISCOUNT_FIXED:
        discount = min(value, total_amount)
    elif discount_type == DISCOUNT_PERCENTAGE:
        discount = total_amount * value / PERCENT_BASE
        if max_discount is not None:
            discount = min(discount, Decimal(max_discount))
        discount = min(discount, total_amount)
    else:
        discount = ZERO
    return max(ZERO, discount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_coupon_datetime(value: Union[str, datetime, date], end_of_day: bool = False) -> datetime:
    """
    Admin-entered coupon date -> naive UTC datetime.

    ``YYYY-MM-DD`` and naive ISO datetimes are São Paulo local time. A date-only
    ``valid_until`` covers the whole day (23:59:59).
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.max.replace(microsecond=0) if end_of_day else time.min)
    else:
        text = str(value).strip()
        try:
            if len(text) == 10:
                day = date.fromisoformat(text)
                parsed = datetime.combine(day, time(23, 59, 59) if end_of_day else time.min)
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidCouponDataError(f"Data inválida: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=SAO_PAULO_TZ)
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


class CouponService:
    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.cache = cache

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(Coupon).where(func.upper(Coupon.code) == normalize_code(code))
        )
        return result.scalar_one_or_none()

    async def _customer_usage_count(self, coupon_id: int, customer_id: int) -> int:
        count = await self.session.scalar(
            select(func.count(CouponUsage.id)).where(
                CouponUsage.coupon_id == coupon_id,
                CouponUsage.customer_id == customer_id,
            )
        )
        return int(count or 0)

    async def validate_coupon(
        self,
        code: str,
        event_id: int,
        total_amount: Decimal,
        customer_id: Optional[int] = None,
        zip_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Validate a coupon against an event/total and compute the discount.

        Returns ``{"valid": False, "message"}`` on the first failed rule, or
        ``{"valid": True, "coupon", "discount", "final_amount", "message"}``.
        """
        coupon = await self.get_by_code(code)
        if coupon is None:
            return {"valid": False, "message": MSG_NOT_FOUND}

        now = datetime.utcnow()
        if not coupon.active:
            return {"valid": False, "message": MSG_INACTIVE}
        if coupon.valid_until and coupon.valid_until < now:
            return {"valid": False, "message": MSG_EXPIRED}
        if coupon.valid_from and coupon.valid_from > now:
            return {"valid": False, "message": MSG_NOT_YET_VALID}
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return {"valid": False, "message": MSG_EXHAUSTED}
        if coupon.event_ids and event_id not in coupon.event_ids:
            return {"valid": False, "message": MSG_WRONG_EVENT}
        if coupon.cep_zone_ids:
            if not zip_code:
                return {"valid": False, "message": MSG_ZIP_REQUIRED}
            zone = await CepZoneService(self.session, self.cache).find_zone_for_cep(zip_code)
            if zone is None or zone["id"] not in coupon.cep_zone_ids:
                return {"valid": False, "message": MSG_WRONG_ZONE}
        if customer_id is not None and coupon.per_customer_limit:
            used = await self._customer_usage_count(coupon.id, customer_id)
            if used >= coupon.per_customer_limit:
                return {"valid": False, "message": MSG_CUSTOMER_LIMIT}

        discount = calculate_discount(
            coupon.discount_type, coupon.discount_value, total_amount, coupon.max_discount
        )
        return {
            "valid": True,
            "coupon": {
                "id": coupon.id,
                "code": coupon.code,
                "discount_type": coupon.discount_type,
                "discount_value": float(coupon.discount_value),
                "description": coupon.description,
            },
            "discount": discount,
            "final_amount": max(ZERO, Decimal(total_amount) - discount),
            "message": MSG_APPLIED,
        }

    async def discount_for_order(
        self,
        code: str,
        event_id: int,
        total_amount: Decimal,
        customer_id: int,
        zip_code: str,
    ) -> Decimal:
        """Discount for a coupon submitted with an order; invalid coupons reject the order."""
        result = await self.validate_coupon(code, event_id, total_amount, customer_id, zip_code)
        if not result["valid"]:
            raise InvalidCouponError(result["message"])
        return result["discount"]

    async def record_usage(self, order: Order) -> bool:
        """
        Redeem the order's coupon: one CouponUsage row plus the usage counter.

        Called when the order is confirmed. Returns False when the order has no
        coupon, the coupon is gone, the usage was already recorded or the
        coupon hit its usage limit since the order validated it. The counter
        never passes ``usage_limit``.
        """
        if not order.coupon_code:
            return False
        coupon = await self.get_by_code(order.coupon_code)
        if coupon is None:
            logger.warning("Coupon of confirmed order no longer exists", order_number=order.order_number,
                           coupon_code=order.coupon_code)
            return False

        existing = await self.session.scalar(
            select(CouponUsage.id).where(
                CouponUsage.coupon_id == coupon.id,
                CouponUsage.order_id == order.id,
            )
        )
        if existing:
            return False

        result = await self.session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
        )
        if result.rowcount == 0:
            logger.warning(
                "Coupon usage limit exceeded on confirmation",
                coupon_code=coupon.code,
                order_number=order.order_number,
                usage_limit=coupon.usage_limit,
            )
            return False

        self.session.add(CouponUsage(
            coupon_id=coupon.id,
            customer_id=order.customer_id,
            order_id=order.id,
            discount_amount=order.discount_amount or ZERO,
        ))
        await self.session.flush()
        coupon_redemptions_total.inc()
        logger.info("Coupon redeemed", coupon_code=coupon.code, order_number=order.order_number)
        return True

    # ----- Admin CRUD -----

    async def list_coupons(self) -> List[Dict[str, Any]]:
        result = await self.session.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()))
        return [self.coupon_to_dict(c) for c in result.scalars().all()]

    async def get_coupon(self, coupon_id: int) -> Coupon:
        coupon = await self.session.get(Coupon, coupon_id)
        if not coupon:
            raise CouponNotFoundError(coupon_id)
        return coupon

    async def create_coupon(self, data: Dict[str, Any]) -> Dict[str, Any]:
        code = normalize_code(data["code"])
        if await self.get_by_code(code):
            raise CouponCodeExistsError(code)
        values = {k: data[k] for k in COUPON_FIELDS if data.get(k) is not None}
        coupon = Coupon(
            code=code,
            valid_from=parse_coupon_datetime(data["valid_from"]),
            valid_until=parse_coupon_datetime(data["valid_until"], end_of_day=True),
            usage_count=0,
            **values,
        )
        self._validate(coupon)
        self.session.add(coupon)
        await self.session.flush()
        logger.info("Coupon created", coupon_code=code, discount_type=coupon.discount_type)
        return self.coupon_to_dict(coupon)

    async def update_coupon(self, coupon_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        coupon = await self.get_coupon(coupon_id)
        if data.get("code"):
            code = normalize_code(data["code"])
            other = await self.get_by_code(code)
            if other and other.id != coupon.id:
                raise CouponCodeExistsError(code)
            coupon.code = code
        for field in COUPON_FIELDS:
            if field in data:
                setattr(coupon, field, data[field])
        if data.get("valid_from"):
            coupon.valid_from = parse_coupon_datetime(data["valid_from"])
        if data.get("valid_until"):
            coupon.valid_until = parse_coupon_datetime(data["valid_until"], end_of_day=True)
        self._validate(coupon)
        await self.session.flush()
        return self.coupon_to_dict(coupon)

    async def delete_coupon(self, coupon_id: int) -> None:
        coupon = await self.get_coupon(coupon_id)
        await self.session.delete(coupon)
        await self.session.flush()
        logger.info("Coupon deleted", coupon_id=coupon_id)

    @staticmethod
    def _validate(coupon: Coupon) -> None:
        if coupon.discount_type not in (DISCOUNT_FIXED, DISCOUNT_PERCENTAGE):
            raise InvalidCouponDataError("Tipo de desconto deve ser 'fixed' ou 'percentage'")
        if coupon.discount_value is None or Decimal(coupon.discount_value) <= 0:
            raise InvalidCouponDataError("Valor do desconto deve ser maior que zero")
        if coupon.discount_type == DISCOUNT_PERCENTAGE and Decimal(coupon.discount_value) > PERCENT_BASE:
            raise InvalidCouponDataError("Desconto percentual não pode passar de 100%")
        if coupon.valid_until < coupon.valid_from:
            raise InvalidCouponDataError("Data final deve ser posterior à data inicial")
        if coupon.usage_limit is not None and coupon.usage_limit < 1:
            raise InvalidCouponDataError("Limite de uso deve ser maior que zero")

    @staticmethod
    def coupon_to_dict(coupon: Coupon) -> Dict[str, Any]:
        return {
            "id": coupon.id,
            "code": coupon.code,
            "description": coupon.description,
            "discount_type": coupon.discount_type,
            "discount_value": float(coupon.discount_value),
            "max_discount": float(coupon.max_discount) if coupon.max_discount is not None else None,
            "valid_from": coupon.valid_from.isoformat() if coupon.valid_from else None,
            "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
            "usage_limit": coupon.usage_limit,
            "usage_count": coupon.usage_count or 0,
            "per_customer_limit": coupon.per_customer_limit,
            "event_ids": coupon.event_ids or [],
            "cep_zone_ids": coupon.cep_zone_ids or [],
            "active": coupon.active if coupon.active is not None else True,
        }
