"""
Payment service - Mercado Pago card and PIX payments for kit orders.

Card payments are charged before the order exists: the order number is
generated first and sent as ``external_reference``, and the order is only
stored when the gateway accepts the payment (approved, pending or in_process).

PIX payments are created for an order that already awaits payment.

Order status follows the payment through the status poll and the webhook:
approved -> confirmado, rejected/cancelled -> cancelado.
"""
import asyncio
import hashlib
import hmac
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

import mercadopago
from mercadopago.config import RequestOptions
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    CHANGED_BY_ADMIN,
    CHANGED_BY_GATEWAY,
    FAILED_PAYMENT_STATUSES,
    ONE_CENT,
    ORDER_CREATING_PAYMENT_STATUSES,
    PAYMENT_APPROVED,
    PAYMENT_REFUNDED,
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    ZERO,
)
from backend.app.core.cpf import clean_cpf
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import payments_processed_total, webhook_events_total
from backend.app.core.settings import get_settings
from backend.app.models.order import Order
from backend.app.services.cache import CacheService
from backend.app.services.customers import CustomerService, split_name
from backend.app.services.orders import OrderService, validate_kits

logger = get_logger(__name__)

WEBHOOK_MAX_AGE_SECONDS = 5 * 60
WEBHOOK_PAYMENT_ACTIONS = ("payment.created", "payment.updated")
GATEWAY_NAME = "Mercado Pago"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PaymentServiceError(ServiceError):
    """Base exception for payment service errors."""


class PaymentNotConfiguredError(PaymentServiceError):
    """MERCADOPAGO_ACCESS_TOKEN not set."""

    def __init__(self):
        super().__init__("Sistema de pagamento não configurado", 503)


class PaymentGatewayError(PaymentServiceError):
    def __init__(self, message: str):
        super().__init__(f"Erro no processamento do pagamento: {message}", 502)


class DuplicatePaymentError(PaymentServiceError):
    """The idempotency key already produced an order."""

    def __init__(self, order_number: str):
        super().__init__(
            "Pagamento já processado", 409, order_number=order_number, is_duplicate=True
        )


class PaymentRejectedError(PaymentServiceError):
    def __init__(self, status: str, status_detail: Optional[str] = None):
        super().__init__(
            "Pagamento recusado. Verifique os dados do cartão ou tente outro meio de pagamento.",
            400,
            code="PAYMENT_REJECTED",
            payment_status=status,
            status_detail=status_detail,
        )


class AmountMismatchError(PaymentServiceError):
    def __init__(self, expected: Decimal, received: Decimal):
        super().__init__(
            "Valor do pagamento diferente do valor calculado para o pedido",
            400,
            code="AMOUNT_MISMATCH",
            expected_amount=float(expected),
            received_amount=float(received),
        )


class PaymentOrderStateError(PaymentServiceError):
    pass


class InvalidWebhookSignatureError(PaymentServiceError):
    def __init__(self, message: str):
        super().__init__(message, 401)


# ---------------------------------------------------------------------------
# Gateway helpers
# ---------------------------------------------------------------------------

def get_sdk() -> "mercadopago.SDK":
    settings = get_settings()
    if not settings.MERCADOPAGO_ACCESS_TOKEN:
        raise PaymentNotConfiguredError()
    return mercadopago.SDK(settings.MERCADOPAGO_ACCESS_TOKEN.strip())


def idempotency_options(key: str) -> RequestOptions:
    return RequestOptions(custom_headers={"x-idempotency-key": key})


async def _call_gateway(func, *args) -> Dict[str, Any]:
    """Run a blocking SDK call in a thread and unwrap ``{"status", "response"}``."""
    try:
        result = await asyncio.to_thread(func, *args)
    except Exception as exc:
        logger.error("Mercado Pago request failed", error=str(exc))
        raise PaymentGatewayError(str(exc))
    http_status = result.get("status")
    response = result.get("response") or {}
    if http_status not in (200, 201):
        message = response.get("message") if isinstance(response, dict) else None
        logger.warning("Mercado Pago returned an error", http_status=http_status, message=message)
        raise PaymentGatewayError(message or f"HTTP {http_status}")
    return response


def parse_signature_header(x_signature: str) -> Dict[str, str]:
    """``ts=1704908010,v1=abc...`` -> {"ts": ..., "v1": ...}"""
    parts = {}
    for chunk in (x_signature or "").split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def webhook_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{ts};"


def sign_webhook(secret: str, data_id: str, request_id: str, ts: str) -> str:
    return hmac.new(
        secret.encode(), webhook_manifest(data_id, request_id, ts).encode(), hashlib.sha256
    ).hexdigest()


def verify_webhook_signature(
    secret: str,
    x_signature: Optional[str],
    x_request_id: Optional[str],
    data_id: Optional[str],
    now: Optional[float] = None,
) -> None:
    """
    Validate the ``x-signature`` header of a Mercado Pago notification.

    Raises:
        InvalidWebhookSignatureError: header missing or malformed, digest
            mismatch, or ``ts`` older than five minutes
    """
    if not x_signature or not x_request_id:
        raise InvalidWebhookSignatureError("Assinatura ausente")
    parts = parse_signature_header(x_signature)
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1:
        raise InvalidWebhookSignatureError("Formato de assinatura inválido")

    expected = sign_webhook(secret, str(data_id or ""), x_request_id, ts)
    if not hmac.compare_digest(expected, v1):
        raise InvalidWebhookSignatureError("Assinatura inválida")

    try:
        ts_seconds = int(ts)
    except ValueError:
        raise InvalidWebhookSignatureError("Formato de assinatura inválido")
    now = time.time() if now is None else now
    if now - ts_seconds > WEBHOOK_MAX_AGE_SECONDS:
        raise InvalidWebhookSignatureError("Notificação expirada")


def _pix_data(response: Dict[str, Any]) -> Dict[str, Any]:
    transaction = (response.get("point_of_interaction") or {}).get("transaction_data") or {}
    return {
        "qr_code": transaction.get("qr_code"),
        "qr_code_base64": transaction.get("qr_code_base64"),
        "ticket_url": transaction.get("ticket_url"),
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PaymentService:
    """Mercado Pago payment operations and the order status they drive."""

    def __init__(self, session: AsyncSession, cache: Optional[CacheService] = None):
        self.session = session
        self.cache = cache
        self.orders = OrderService(session, cache)

    # -- Card -----------------------------------------------------------------

    async def process_card_payment(
        self,
        customer_id: int,
        event_id: int,
        address_id: int,
        kit_quantity: int,
        kits: List[Dict[str, Any]],
        token: str,
        payment_method_id: str,
        amount: Decimal,
        payer_email: str,
        installments: int = 1,
        issuer_id: Optional[str] = None,
        payment_method: str = "credit",
        coupon_code: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Charge a card and create the order when the gateway accepts it.

        Raises:
            DuplicatePaymentError: the customer already used this idempotency key (409)
            IdempotencyKeyConflictError: the key belongs to another customer (409)
            AmountMismatchError: client amount differs from the server price
            PaymentRejectedError: gateway refused the card; no order is stored
        """
        if idempotency_key:
            existing = await self.orders.get_own_by_idempotency_key(customer_id, idempotency_key)
            if existing:
                logger.info("Duplicate card payment blocked", order_number=existing.order_number)
                raise DuplicatePaymentError(existing.order_number)

        sdk = get_sdk()
        validate_kits(kits, kit_quantity)
        event, address, breakdown = await self.orders.price_order(
            customer_id, event_id, address_id, kit_quantity, coupon_code
        )
        received = Decimal(str(amount))
        if abs(received - breakdown.total_cost) > ONE_CENT:
            logger.warning(
                "Card payment amount mismatch",
                customer_id=customer_id,
                expected=float(breakdown.total_cost),
                received=float(received),
            )
            raise AmountMismatchError(breakdown.total_cost, received)
        if breakdown.total_cost <= ZERO:
            raise PaymentOrderStateError("Pedido sem valor a pagar")

        customer = await CustomerService(self.session).get_customer(customer_id)
        order_number = await self.orders.new_order_number()
        payload: Dict[str, Any] = {
            "transaction_amount": float(breakdown.total_cost),
            "token": token,
            "description": f"[Retirada do Kit] {event.name}",
            "installments": installments,
            "payment_method_id": payment_method_id,
            "external_reference": order_number,
            "payer": {
                "email": payer_email,
                "identification": {"type": "CPF", "number": clean_cpf(customer.cpf)},
            },
        }
        if issuer_id:
            payload["issuer_id"] = issuer_id
        notification_url = get_settings().MERCADOPAGO_NOTIFICATION_URL
        if notification_url:
            payload["notification_url"] = notification_url

        response = await _call_gateway(
            sdk.payment().create, payload, idempotency_options(idempotency_key or order_number)
        )
        status = response.get("status")
        status_detail = response.get("status_detail")
        payments_processed_total.labels(method=payment_method, status=status or "unknown").inc()
        logger.info(
            "Card payment processed",
            order_number=order_number,
            payment_id=response.get("id"),
            status=status,
            status_detail=status_detail,
        )
        if status not in ORDER_CREATING_PAYMENT_STATUSES:
            raise PaymentRejectedError(status, status_detail)

        order, _ = await self.orders.create_order(
            customer_id=customer_id,
            event_id=event_id,
            address_id=address_id,
            kit_quantity=kit_quantity,
            kits=kits,
            payment_method=payment_method,
            coupon_code=coupon_code,
            idempotency_key=idempotency_key,
            order_number=order_number,
            breakdown=breakdown,
            payment_id=str(response.get("id")),
            payment_status=status,
        )
        if status == PAYMENT_APPROVED:
            await self._confirm(order, "Pagamento aprovado no cartão")

        return {
            "success": True,
            "order_id": order.id,
            "order_number": order.order_number,
            "payment_id": order.payment_id,
            "status": status,
            "status_detail": status_detail,
            "order_status": order.status,
        }

    # -- PIX ------------------------------------------------------------------

    async def create_pix_payment(self, customer_id: int, order_number: str, payer_email: Optional[str] = None) -> Dict[str, Any]:
        sdk = get_sdk()
        order = await self.orders.get_customer_order(customer_id, order_number)
        if order.status != STATUS_AWAITING_PAYMENT:
            raise PaymentOrderStateError(f"Pedido {order_number} não está aguardando pagamento")
        if order.total_cost <= ZERO:
            raise PaymentOrderStateError("Pedido sem valor a pagar")

        first_name, last_name = split_name(order.customer.name)
        payload: Dict[str, Any] = {
            "transaction_amount": float(order.total_cost),
            "description": f"[Retirada do Kit] {order.event.name}",
            "payment_method_id": "pix",
            "external_reference": order.order_number,
            "payer": {
                "email": payer_email or order.customer.email,
                "first_name": first_name,
                "last_name": last_name,
                "identification": {"type": "CPF", "number": order.customer.cpf},
            },
        }
        notification_url = get_settings().MERCADOPAGO_NOTIFICATION_URL
        if notification_url:
            payload["notification_url"] = notification_url

        response = await _call_gateway(
            sdk.payment().create, payload, idempotency_options(f"pix-{order.order_number}-{uuid.uuid4().hex}")
        )
        order.payment_id = str(response.get("id"))
        order.payment_status = response.get("status")
        order.payment_created_at = datetime.utcnow()
        order.payment_method = "pix"
        await self.session.flush()

        payments_processed_total.labels(method="pix", status=order.payment_status or "unknown").inc()
        logger.info("PIX payment created", order_number=order.order_number, payment_id=order.payment_id)
        return {
            "payment_id": order.payment_id,
            "status": order.payment_status,
            "order_number": order.order_number,
            **_pix_data(response),
        }

    # -- Status sync ----------------------------------------------------------

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        sdk = get_sdk()
        return await _call_gateway(sdk.payment().get, payment_id)

    async def get_payment_status(self, payment_id: str, customer_id: Optional[int] = None) -> Dict[str, Any]:
        """Poll the gateway and sync the order referenced by the payment."""
        payment = await self.fetch_payment(payment_id)
        order_number = payment.get("external_reference")
        if customer_id is not None and order_number:
            await self.orders.get_customer_order(customer_id, order_number)
        order = await self.sync_order(payment)
        return {
            "payment_id": str(payment.get("id", payment_id)),
            "status": payment.get("status"),
            "status_detail": payment.get("status_detail"),
            "order_number": order_number,
            "order_status": order.status if order else None,
        }

    async def sync_order(self, payment: Dict[str, Any]) -> Optional[Order]:
        """
        Apply a gateway payment state to its order.

        An approval arriving for an order already cancelled (e.g. by the
        payment timeout) is refunded instead of reviving the order.
        """
        order_number = payment.get("external_reference")
        if not order_number:
            logger.warning("Payment without external_reference", payment_id=payment.get("id"))
            return None
        order = await self.orders.find_by_number(order_number, for_update=True)
        if order is None:
            logger.error("Payment references unknown order", order_number=order_number)
            return None

        status = payment.get("status")
        if payment.get("id") is not None:
            order.payment_id = str(payment["id"])
        order.payment_status = status

        if status == PAYMENT_APPROVED:
            if order.status == STATUS_CANCELLED:
                await self._refund(order)
            elif order.status == STATUS_AWAITING_PAYMENT:
                await self._confirm(order, "Pagamento aprovado")
        elif status in FAILED_PAYMENT_STATUSES and order.status == STATUS_AWAITING_PAYMENT:
            await self.orders.update_status(
                order, STATUS_CANCELLED, changed_by=CHANGED_BY_GATEWAY, changed_by_name=GATEWAY_NAME,
                reason="Pagamento rejeitado",
            )
        await self.session.flush()
        return order

    async def _confirm(self, order: Order, reason: str) -> None:
        from backend.app.services.email import EmailService, EMAIL_PAYMENT_CONFIRMATION

        changed = await self.orders.update_status(
            order, STATUS_CONFIRMED, changed_by=CHANGED_BY_GATEWAY, changed_by_name=GATEWAY_NAME,
            reason=reason, send_email=False,
        )
        if changed:
            await EmailService(self.session).send_order_email(order, EMAIL_PAYMENT_CONFIRMATION)

    # -- Webhook --------------------------------------------------------------

    async def process_webhook(self, payload: Dict[str, Any]) -> str:
        """
        Handle a verified notification. Returns the result label recorded in metrics.
        """
        action = payload.get("action")
        data_id = (payload.get("data") or {}).get("id")
        if not data_id or (action not in WEBHOOK_PAYMENT_ACTIONS and payload.get("type") != "payment"):
            webhook_events_total.labels(result="ignored").inc()
            logger.info("Webhook ignored", action=action, type=payload.get("type"))
            return "ignored"

        payment = await self.fetch_payment(str(data_id))
        order = await self.sync_order(payment)
        result = "processed" if order else "order_not_found"
        webhook_events_total.labels(result=result).inc()
        logger.info("Webhook processed", payment_id=data_id, status=payment.get("status"), result=result)
        return result

    # -- Refunds --------------------------------------------------------------

    async def _refund(self, order: Order) -> Dict[str, Any]:
        sdk = get_sdk()
        response = await _call_gateway(sdk.refund().create, order.payment_id)
        order.payment_status = PAYMENT_REFUNDED
        await self.session.flush()
        payments_processed_total.labels(method=order.payment_method, status=PAYMENT_REFUNDED).inc()
        logger.info("Payment refunded", order_number=order.order_number, payment_id=order.payment_id,
                    refund_id=response.get("id"))
        return response

    async def refund_order(self, order_id: int, admin_name: Optional[str] = None,
                           reason: Optional[str] = None) -> Dict[str, Any]:
        """Refund an approved payment and cancel the order."""
        order = await self.orders.get_order_for_update(order_id)
        if not order.payment_id or order.payment_status != PAYMENT_APPROVED:
            raise PaymentOrderStateError("Pedido não possui pagamento aprovado para estorno")
        response = await self._refund(order)
        await self.orders.update_status(
            order, STATUS_CANCELLED, changed_by=CHANGED_BY_ADMIN, changed_by_name=admin_name,
            reason=reason or "Pagamento estornado",
        )
        return {
            "order_number": order.order_number,
            "payment_id": order.payment_id,
            "payment_status": order.payment_status,
            "refund_id": response.get("id"),
            "status": order.status,
        }
