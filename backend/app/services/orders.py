# backend/app/services/orders.py
"""
Order service - order creation, status lifecycle, admin listing and stats.
"""
import secrets
import uuid
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.cep import clean_cep, is_valid_cep
from backend.app.core.constants import (
    CHANGED_BY_SYSTEM,
    MAX_KITS_PER_ORDER,
    NON_REVENUE_STATUSES,
    ORDER_STATUS_LABELS,
    PAYMENT_METHODS,
    STATUS_AWAITING_PAYMENT,
    STATUS_CONFIRMED,
    VALID_ORDER_STATUSES,
    ZERO,
)
from backend.app.core.cpf import clean_cpf, format_cpf, is_valid_cpf
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import orders_created_total
from backend.app.models.customer import Customer, Address
from backend.app.models.event import Event
from backend.app.models.order import Order, Kit, OrderStatusHistory
from backend.app.services.cache import CacheService
from backend.app.services.coupons import CouponService, normalize_code
from backend.app.services.customers import CustomerService, ADDRESS_FIELDS
from backend.app.services.events import EventService
from backend.app.services.pricing import PricingService, PriceBreakdown

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 10


class OrderServiceError(ServiceError):
    """Base exception for order service errors."""


class OrderNotFoundError(OrderServiceError):
    def __init__(self, order_ref):
        super().__init__(f"Pedido {order_ref} não encontrado", 404)


class OrderAccessDeniedError(OrderServiceError):
    def __init__(self, order_ref):
        super().__init__(f"Acesso negado ao pedido {order_ref}", 403)


class InvalidOrderStatusError(OrderServiceError):
    def __init__(self, status: str):
        super().__init__(
            f"Status inválido: {status}. Válidos: {', '.join(VALID_ORDER_STATUSES)}", 400
        )


class InvalidKitsError(OrderServiceError):
    pass


class InvalidPaymentMethodError(OrderServiceError):
    def __init__(self, method: str):
        super().__init__(f"Forma de pagamento inválida: {method}", 400)


class IdempotencyKeyConflictError(OrderServiceError):
    """The key already belongs to another customer's order."""

    def __init__(self):
        super().__init__("Chave de idempotência já utilizada", 409, code="IDEMPOTENCY_KEY_CONFLICT")


def generate_order_number(year: Optional[int] = None) -> str:
    """KR{year}{6 random digits}"""
    year = year or datetime.utcnow().year
    return f"KR{year}{secrets.randbelow(10 ** 6):06d}"


def validate_kits(kits: List[Dict[str, Any]], kit_quantity: int) -> List[Dict[str, str]]:
    """Kit list must match the quantity; every athlete needs a valid CPF."""
    if kit_quantity < 1 or kit_quantity > MAX_KITS_PER_ORDER:
        raise InvalidKitsError(f"Quantidade de kits deve ser entre 1 e {MAX_KITS_PER_ORDER}")
    if len(kits) != kit_quantity:
        raise InvalidKitsError(
            f"Número de kits ({len(kits)}) diferente da quantidade informada ({kit_quantity})"
        )
    cleaned = []
    for index, kit in enumerate(kits, start=1):
        if not (kit.get("name") or "").strip():
            raise InvalidKitsError(f"Nome do atleta do kit {index} é obrigatório")
        if not is_valid_cpf(kit.get("cpf")):
            raise InvalidKitsError(f"CPF inválido no kit {index}")
        if not (kit.get("shirt_size") or "").strip():
            raise InvalidKitsError(f"Tamanho da camiseta do kit {index} é obrigatório")
        cleaned.append({
            "name": kit["name"].strip(),
            "cpf": clean_cpf(kit["cpf"]),
            "shirt_size": kit["shirt_size"].strip().upper(),
        })
    return cleaned


class OrderService:
    """Service class for order operations."""

    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.cache = cache

    # ----- Lookups -----

    async def get_order(self, order_id: int) -> Order:
        order = await self.session.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def get_order_for_update(self, order_id: int) -> Order:
        """Get order with row-level lock for status changes driven by the gateway."""
        result = await self.session.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def get_by_number(self, order_number: str) -> Order:
        result = await self.session.execute(select(Order).where(Order.order_number == order_number))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(order_number)
        return order

    async def find_by_number(self, order_number: str, for_update: bool = False) -> Optional[Order]:
        query = select(Order).where(Order.order_number == order_number)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        if not key:
            return None
        result = await self.session.execute(select(Order).where(Order.idempotency_key == key))
        return result.scalar_one_or_none()

    async def get_own_by_idempotency_key(self, customer_id: int, key: Optional[str]) -> Optional[Order]:
        """Order an earlier submission of this customer created with the key.

        A key tied to another customer's order raises IdempotencyKeyConflictError
        and reveals nothing about that order.
        """
        existing = await self.get_by_idempotency_key(key)
        if existing is not None and existing.customer_id != customer_id:
            logger.warning("Idempotency key reused by another customer", customer_id=customer_id)
            raise IdempotencyKeyConflictError()
        return existing

    async def get_customer_order(self, customer_id: int, order_number: str) -> Order:
        order = await self.get_by_number(order_number)
        if order.customer_id != customer_id:
            raise OrderAccessDeniedError(order_number)
        return order

    async def new_order_number(self) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            exists = await self.session.scalar(select(Order.id).where(Order.order_number == candidate))
            if not exists:
                return candidate
        raise OrderServiceError("Não foi possível gerar o número do pedido", 500)

    # ----- Pricing -----

    async def price_order(
        self,
        customer_id: int,
        event_id: int,
        address_id: int,
        kit_quantity: int,
        coupon_code: Optional[str] = None,
    ) -> Tuple[Event, Address, PriceBreakdown]:
        """Server-side price of an order; client totals are never trusted."""
        event = await EventService(self.session, self.cache).get_available_event(event_id)
        address = await CustomerService(self.session).get_owned_address(customer_id, address_id)
        breakdown = await PricingService(self.session, self.cache).quote(event, address.zip_code, kit_quantity)
        if coupon_code:
            discount = await CouponService(self.session, self.cache).discount_for_order(
                coupon_code, event.id, breakdown.subtotal, customer_id, address.zip_code
            )
            breakdown = breakdown.with_discount(discount)
        return event, address, breakdown

    # ----- Creation -----

    async def create_order(
        self,
        customer_id: int,
        event_id: int,
        address_id: int,
        kit_quantity: int,
        kits: List[Dict[str, Any]],
        payment_method: str,
        coupon_code: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        order_number: Optional[str] = None,
        breakdown: Optional[PriceBreakdown] = None,
        payment_id: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> Tuple[Order, bool]:
        """
        Create an order awaiting payment.

        A reused idempotency key returns the order created by the first request
        instead of creating a second one.

        Args:
            breakdown: price already computed by the caller (card flow); recomputed otherwise
            order_number: pre-generated number (card flow uses it as the gateway reference)

        Returns:
            (order, created) - created is False when the idempotency key matched

        Caller must commit the session after this returns.
        """
        if idempotency_key:
            existing = await self.get_own_by_idempotency_key(customer_id, idempotency_key)
            if existing:
                logger.info("Duplicate order submission resolved", order_number=existing.order_number,
                            idempotency_key=idempotency_key)
                return existing, False

        if payment_method not in PAYMENT_METHODS:
            raise InvalidPaymentMethodError(payment_method)
        cleaned_kits = validate_kits(kits, kit_quantity)

        event, address, priced = await self.price_order(
            customer_id, event_id, address_id, kit_quantity, coupon_code
        )
        breakdown = breakdown or priced
        customer = await CustomerService(self.session).get_customer(customer_id)

        order_number = order_number or await self.new_order_number()
        try:
            # Savepoint: a lost race undoes only this insert
            async with self.session.begin_nested():
                order = Order(
                    order_number=order_number,
                    event=event,
                    customer=customer,
                    address=address,
                    kit_quantity=kit_quantity,
                    base_cost=breakdown.base_cost,
                    delivery_cost=breakdown.delivery_cost,
                    extra_kits_cost=breakdown.extra_kits_cost,
                    donation_cost=breakdown.donation_cost,
                    discount_amount=breakdown.discount_amount,
                    coupon_code=normalize_code(coupon_code) if coupon_code else None,
                    total_cost=breakdown.total_cost,
                    payment_method=payment_method,
                    status=STATUS_AWAITING_PAYMENT,
                    idempotency_key=idempotency_key,
                    payment_id=payment_id,
                    payment_status=payment_status,
                    payment_created_at=datetime.utcnow() if payment_id else None,
                    cep_zone_id=breakdown.cep_zone_id,
                    kits=[Kit(**kit) for kit in cleaned_kits],
                )
                self.session.add(order)
        except IntegrityError:
            # Concurrent request with the same idempotency key won the insert
            existing = await self.get_own_by_idempotency_key(customer_id, idempotency_key) if idempotency_key else None
            if existing is None:
                raise
            logger.info("Idempotency race resolved to existing order", order_number=existing.order_number)
            return existing, False

        self.session.add(OrderStatusHistory(
            order_id=order.id,
            previous_status=None,
            new_status=STATUS_AWAITING_PAYMENT,
            changed_by=CHANGED_BY_SYSTEM,
            changed_by_name="Sistema",
            reason="Pedido criado",
        ))
        await self.session.flush()

        orders_created_total.labels(pricing_type=breakdown.pricing_type, payment_method=payment_method).inc()
        logger.info(
            "Order created",
            order_number=order.order_number,
            customer_id=customer_id,
            event_id=event_id,
            total=float(order.total_cost),
            pricing_type=breakdown.pricing_type,
        )

        if order.total_cost <= ZERO:
            await self.update_status(
                order, STATUS_CONFIRMED, changed_by=CHANGED_BY_SYSTEM, changed_by_name="Sistema",
                reason="Pedido sem custo",
            )
        else:
            from backend.app.services.scheduler import schedule_payment_reminder
            schedule_payment_reminder(order.order_number)
        return order, True

    # ----- Status lifecycle -----

    async def update_status(
        self,
        order: Order,
        new_status: str,
        changed_by: str,
        changed_by_name: Optional[str] = None,
        reason: Optional[str] = None,
        bulk_operation_id: Optional[str] = None,
        send_email: bool = True,
    ) -> bool:
        """
        Move an order to ``new_status`` and write the history entry.

        Confirmation redeems the order's coupon and cancels the payment reminder.
        Returns False (no-op) when the order is already in that status.
        """
        from backend.app.services.email import EmailService, email_type_for_status
        from backend.app.services.scheduler import cancel_payment_reminder

        if new_status not in VALID_ORDER_STATUSES:
            raise InvalidOrderStatusError(new_status)
        previous_status = order.status
        if previous_status == new_status:
            return False

        order.status = new_status
        order.updated_at = datetime.utcnow()
        self.session.add(OrderStatusHistory(
            order_id=order.id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=changed_by,
            changed_by_name=changed_by_name,
            reason=reason,
            bulk_operation_id=bulk_operation_id,
        ))
        if new_status == STATUS_CONFIRMED:
            await CouponService(self.session, self.cache).record_usage(order)
            cancel_payment_reminder(order.order_number)
        await self.session.flush()

        logger.info(
            "Order status changed",
            order_number=order.order_number,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=changed_by,
        )
        if send_email:
            await EmailService(self.session).send_order_email(
                order, email_type_for_status(new_status), previous_status
            )
        return True

    async def bulk_update_status(
        self,
        order_ids: List[int],
        new_status: str,
        changed_by: str,
        changed_by_name: Optional[str] = None,
        reason: Optional[str] = None,
        send_email: bool = True,
    ) -> Dict[str, Any]:
        """Apply one status to many orders under a shared bulk_operation_id."""
        if new_status not in VALID_ORDER_STATUSES:
            raise InvalidOrderStatusError(new_status)
        bulk_operation_id = uuid.uuid4().hex
        results = []
        for order_id in order_ids:
            order = await self.session.get(Order, order_id)
            if not order:
                results.append({"order_id": order_id, "success": False, "error": "Pedido não encontrado"})
                continue
            changed = await self.update_status(
                order, new_status, changed_by, changed_by_name, reason,
                bulk_operation_id=bulk_operation_id, send_email=send_email,
            )
            results.append({
                "order_id": order_id,
                "order_number": order.order_number,
                "success": True,
                "changed": changed,
            })
        logger.info("Bulk status update", bulk_operation_id=bulk_operation_id, new_status=new_status,
                    orders=len(order_ids))
        return {
            "bulk_operation_id": bulk_operation_id,
            "updated": sum(1 for r in results if r.get("changed")),
            "results": results,
        }

    async def get_status_history(self, order_id: int) -> List[Dict[str, Any]]:
        await self.get_order(order_id)
        result = await self.session.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
        )
        return [
            {
                "id": h.id,
                "previous_status": h.previous_status,
                "new_status": h.new_status,
                "new_status_label": ORDER_STATUS_LABELS.get(h.new_status, h.new_status),
                "changed_by": h.changed_by,
                "changed_by_name": h.changed_by_name,
                "reason": h.reason,
                "bulk_operation_id": h.bulk_operation_id,
                "created_at": h.created_at.isoformat() if h.created_at else None,
            }
            for h in result.scalars().all()
        ]

    # ----- Admin -----

    async def list_orders(
        self,
        status: Optional[str] = None,
        event_id: Optional[int] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        conditions = self.filter_conditions(status, event_id, search, date_from, date_to)
        base = select(Order).join(Customer, Customer.id == Order.customer_id).where(*conditions)
        total = int(await self.session.scalar(
            select(func.count()).select_from(base.subquery())
        ) or 0)
        result = await self.session.execute(
            base.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return {
            "orders": [self.order_to_dict(o) for o in result.scalars().all()],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit if limit else 1,
        }

    @staticmethod
    def filter_conditions(
        status: Optional[str] = None,
        event_id: Optional[int] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list:
        """WHERE clauses for admin order filters. Expects a join with Customer."""
        conditions = []
        if status:
            conditions.append(Order.status == status)
        if event_id:
            conditions.append(Order.event_id == event_id)
        if search:
            term = search.strip()
            like = f"%{term.lower()}%"
            options = [
                func.lower(Order.order_number).like(like),
                func.lower(Customer.name).like(like),
            ]
            digits = clean_cpf(term)
            if digits:
                options.append(Customer.cpf.like(f"%{digits}%"))
            conditions.append(or_(*options))
        if date_from:
            conditions.append(Order.created_at >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(Order.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
        return conditions

    async def list_customer_orders(self, customer_id: int) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(Order).where(Order.customer_id == customer_id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return [self.order_to_dict(o) for o in result.scalars().all()]

    async def list_event_orders(self, event_id: int) -> List[Dict[str, Any]]:
        await EventService(self.session).get_event(event_id)
        result = await self.session.execute(
            select(Order).where(Order.event_id == event_id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return [self.order_to_dict(o) for o in result.scalars().all()]

    async def admin_update_order(self, order_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """Correct delivery address and athlete data of an order."""
        order = await self.get_order(order_id)
        address_data = data.get("address") or {}
        for field in ADDRESS_FIELDS:
            if address_data.get(field) is not None:
                value = address_data[field]
                if field == "zip_code":
                    if not is_valid_cep(value):
                        raise OrderServiceError(f"CEP inválido: {value}")
                    value = clean_cep(value)
                setattr(order.address, field, value)

        if data.get("kits") is not None:
            cleaned = validate_kits(data["kits"], order.kit_quantity)
            for kit, values in zip(order.kits, cleaned):
                kit.name = values["name"]
                kit.cpf = values["cpf"]
                kit.shirt_size = values["shirt_size"]

        order.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.info("Order edited by admin", order_number=order.order_number)
        return self.order_to_dict(order)

    async def get_stats(self) -> Dict[str, Any]:
        total_customers = await self.session.scalar(select(func.count(Customer.id)))
        total_orders = await self.session.scalar(select(func.count(Order.id)))
        active_events = await self.session.scalar(select(func.count(Event.id)).where(Event.available == True))
        revenue = await self.session.scalar(
            select(func.coalesce(func.sum(Order.total_cost), 0)).where(Order.status.notin_(NON_REVENUE_STATUSES))
        )
        rows = await self.session.execute(select(Order.status, func.count(Order.id)).group_by(Order.status))
        by_status = {status: 0 for status in VALID_ORDER_STATUSES}
        by_status.update({status: count for status, count in rows.all()})
        return {
            "total_customers": int(total_customers or 0),
            "total_orders": int(total_orders or 0),
            "active_events": int(active_events or 0),
            "total_revenue": float(Decimal(str(revenue or 0))),
            "orders_by_status": by_status,
            "pending_payments": by_status.get(STATUS_AWAITING_PAYMENT, 0),
        }

    # ----- Serialization -----

    @staticmethod
    def order_to_dict(order: Order) -> Dict[str, Any]:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "event_id": order.event_id,
            "customer_id": order.customer_id,
            "address_id": order.address_id,
            "kit_quantity": order.kit_quantity,
            "base_cost": float(order.base_cost or 0),
            "delivery_cost": float(order.delivery_cost or 0),
            "extra_kits_cost": float(order.extra_kits_cost or 0),
            "donation_cost": float(order.donation_cost or 0),
            "discount_amount": float(order.discount_amount or 0),
            "coupon_code": order.coupon_code,
            "total_cost": float(order.total_cost or 0),
            "payment_method": order.payment_method,
            "status": order.status,
            "status_label": ORDER_STATUS_LABELS.get(order.status, order.status),
            "payment_id": order.payment_id,
            "payment_status": order.payment_status,
            "cep_zone_id": order.cep_zone_id,
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "updated_at": order.updated_at.isoformat() if order.updated_at else None,
            "event": {
                "id": order.event.id,
                "name": order.event.name,
                "date": order.event.date.isoformat() if order.event.date else None,
                "location": order.event.location,
            } if order.event else None,
            "customer": {
                "id": order.customer.id,
                "name": order.customer.name,
                "cpf": format_cpf(order.customer.cpf),
                "email": order.customer.email,
                "phone": order.customer.phone,
            } if order.customer else None,
            "address": CustomerService.address_to_dict(order.address) if order.address else None,
            "kits": [
                {"id": k.id, "name": k.name, "cpf": format_cpf(k.cpf), "shirt_size": k.shirt_size}
                for k in order.kits
            ],
        }
