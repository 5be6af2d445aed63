"""Payment API endpoints for the Mercado Pago integration."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error
from backend.app.core.auth import get_current_customer
from backend.app.core.exceptions import ServiceError
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.core.metrics import webhook_events_total
from backend.app.core.settings import get_settings
from backend.app.schemas import CardPaymentBody, PixPaymentBody
from backend.app.services.cache import CacheService
from backend.app.services.payment import (
    InvalidWebhookSignatureError,
    PaymentService,
    verify_webhook_signature,
)

router = APIRouter()
logger = get_logger(__name__)


@router.get("/public-key")
async def get_public_key():
    """Public key for card tokenization in the browser."""
    public_key = get_settings().MERCADOPAGO_PUBLIC_KEY
    if not public_key:
        raise HTTPException(status_code=503, detail="Sistema de pagamento não configurado")
    return {"public_key": public_key}


@router.post("/process-card-payment")
@limiter.limit("10/minute")
async def process_card_payment(
    request: Request,
    data: CardPaymentBody,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """
    Charge a card and create the order.

    409 ``Pagamento já processado`` when the idempotency key already has an order
    of this customer, 409 without order data when it belongs to another customer;
    400 when the card is rejected (no order is created).
    """
    service = PaymentService(session, cache)
    try:
        result = await service.process_card_payment(
            customer_id=customer_id,
            event_id=data.event_id,
            address_id=data.address_id,
            kit_quantity=data.kit_quantity,
            kits=[k.model_dump() for k in data.kits],
            token=data.token,
            payment_method_id=data.payment_method_id,
            amount=data.amount,
            payer_email=data.email,
            installments=data.installments,
            issuer_id=data.issuer_id,
            payment_method=data.payment_method,
            coupon_code=data.coupon_code,
            idempotency_key=data.idempotency_key,
        )
        await session.commit()
        return result
    except ServiceError as e:
        logger.warning("Card payment failed", customer_id=customer_id, error=e.message, error_code=e.status_code)
        await raise_service_error(session, e)


@router.post("/create-pix-payment")
@limiter.limit("10/minute")
async def create_pix_payment(
    request: Request,
    data: PixPaymentBody,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    service = PaymentService(session)
    try:
        result = await service.create_pix_payment(customer_id, data.order_number, payer_email=data.email)
        await session.commit()
        return result
    except ServiceError as e:
        await raise_service_error(session, e)


@router.get("/payment-status/{payment_id}")
async def get_payment_status(
    payment_id: str,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    """Polled by the checkout page every few seconds; syncs the order with the gateway."""
    service = PaymentService(session)
    try:
        result = await service.get_payment_status(payment_id, customer_id=customer_id)
        await session.commit()
        return result
    except ServiceError as e:
        await raise_service_error(session, e)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """
    Mercado Pago notification endpoint.

    The ``x-signature`` header is checked when a webhook secret is configured.
    After that, always returns HTTP 200 so the gateway does not retry endlessly.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="JSON inválido")
    if not isinstance(body, dict):
        body = {}

    data_id = request.query_params.get("data.id") or (body.get("data") or {}).get("id")
    if data_id and not body.get("data"):
        body["data"] = {"id": data_id}

    secret = get_settings().MERCADOPAGO_WEBHOOK_SECRET
    if secret:
        try:
            verify_webhook_signature(
                secret,
                request.headers.get("x-signature"),
                request.headers.get("x-request-id"),
                data_id,
            )
        except InvalidWebhookSignatureError as e:
            webhook_events_total.labels(result="rejected").inc()
            logger.warning("Webhook rejected", reason=e.message)
            raise HTTPException(status_code=401, detail=e.message)
    else:
        logger.warning("MERCADOPAGO_WEBHOOK_SECRET not set, webhook signature not verified")

    logger.info("Payment webhook received", action=body.get("action"), type=body.get("type"), payment_id=data_id)
    try:
        await PaymentService(session).process_webhook(body)
        await session.commit()
    except Exception as exc:
        await session.rollback()
        webhook_events_total.labels(result="error").inc()
        logger.error("Webhook processing failed", error=str(exc), payment_id=data_id)

    return {"status": "ok"}
