"""
Tests for Mercado Pago payments.

Tests cover:
- Card payment: order created only when the gateway accepts the charge
- Duplicate submission and amount mismatch checks
- PIX payment creation
- Status poll and webhook sync (signature, expiry, approval after cancellation)
- Admin refunds

The Mercado Pago SDK module is replaced with a MagicMock; no network calls.
"""
import time
from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient
from mercadopago.config import RequestOptions
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    PAYMENT_APPROVED,
    PAYMENT_REFUNDED,
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
)
from backend.app.models.notification import EmailLog
from backend.app.models.order import Order, OrderStatusHistory
from backend.app.services.payment import (
    InvalidWebhookSignatureError,
    PaymentService,
    PaymentOrderStateError,
    parse_signature_header,
    sign_webhook,
    verify_webhook_signature,
)
from backend.tests.conftest import TestSessionLocal, customer_auth_header, kit_payload

WEBHOOK_SECRET = "test_webhook_secret"


def gateway(create=None, get=None, refund=None, create_status: int = 201) -> MagicMock:
    """Stand-in for the ``mercadopago`` module with canned SDK responses."""
    module = MagicMock()
    sdk = module.SDK.return_value
    sdk.payment.return_value.create.return_value = {"status": create_status, "response": create or {}}
    sdk.payment.return_value.get.return_value = {"status": 200, "response": get or {}}
    sdk.refund.return_value.create.return_value = {"status": 201, "response": refund or {"id": 4242}}
    return module


def card_payload(event, address, amount: float = 12.0, **overrides) -> dict:
    data = {
        "token": "card-token-123",
        "payment_method_id": "visa",
        "installments": 1,
        "email": "maria@example.com",
        "amount": amount,
        "payment_method": "credit",
        "event_id": event.id,
        "address_id": address.id,
        "kit_quantity": 1,
        "kits": kit_payload(1),
    }
    data.update(overrides)
    return data


def signed_headers(data_id: str, request_id: str = "req-1", ts: int = None) -> dict:
    ts = ts if ts is not None else int(time.time())
    v1 = sign_webhook(WEBHOOK_SECRET, data_id, request_id, str(ts))
    return {"x-signature": f"ts={ts},v1={v1}", "x-request-id": request_id}


async def load_order(order_id: int) -> Order:
    async with TestSessionLocal() as session:
        return await session.get(Order, order_id)


# ============================================
# Signature helpers
# ============================================

def test_parse_signature_header():
    assert parse_signature_header("ts=1704908010, v1=abc") == {"ts": "1704908010", "v1": "abc"}
    assert parse_signature_header("") == {}


def test_verify_signature_accepts_valid():
    ts = "1704908010"
    v1 = sign_webhook(WEBHOOK_SECRET, "123", "req-1", ts)
    verify_webhook_signature(WEBHOOK_SECRET, f"ts={ts},v1={v1}", "req-1", "123", now=1704908010 + 60)


@pytest.mark.parametrize("header,request_id,data_id,now", [
    (None, "req-1", "123", 1704908010),
    ("ts=1704908010", "req-1", "123", 1704908010),
    ("ts=1704908010,v1=deadbeef", "req-1", "123", 1704908010),
])
def test_verify_signature_rejects(header, request_id, data_id, now):
    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(WEBHOOK_SECRET, header, request_id, data_id, now=now)


def test_verify_signature_rejects_other_data_id():
    ts = "1704908010"
    v1 = sign_webhook(WEBHOOK_SECRET, "123", "req-1", ts)
    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(WEBHOOK_SECRET, f"ts={ts},v1={v1}", "req-1", "124", now=1704908010)


def test_verify_signature_rejects_stale_notification():
    ts = "1704908010"
    v1 = sign_webhook(WEBHOOK_SECRET, "123", "req-1", ts)
    with pytest.raises(InvalidWebhookSignatureError) as exc_info:
        verify_webhook_signature(WEBHOOK_SECRET, f"ts={ts},v1={v1}", "req-1", "123", now=1704908010 + 301)
    assert exc_info.value.status_code == 401


# ============================================
# Card payments
# ============================================

@pytest.mark.asyncio
async def test_public_key(client: AsyncClient):
    response = await client.get("/api/mercadopago/public-key")
    assert response.status_code == 200
    assert response.json() == {"public_key": "TEST-public-key"}


@pytest.mark.asyncio
async def test_card_payment_approved(client: AsyncClient, test_event, test_address, customer_headers):
    module = gateway(create={"id": 9001, "status": "approved", "status_detail": "accredited"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address, idempotency_key="card-1"),
            headers=customer_headers,
        )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["payment_id"] == "9001"
    assert data["order_status"] == STATUS_CONFIRMED

    payload, options = module.SDK.return_value.payment.return_value.create.call_args.args
    assert payload["transaction_amount"] == 12.0
    assert payload["external_reference"] == data["order_number"]
    assert payload["description"] == "[Retirada do Kit] Corrida de São João"
    assert payload["payer"]["identification"] == {"type": "CPF", "number": "52998224725"}
    assert isinstance(options, RequestOptions)

    async with TestSessionLocal() as session:
        order = await session.get(Order, data["order_id"])
        assert order.payment_status == PAYMENT_APPROVED
        assert order.idempotency_key == "card-1"
        history = (await session.execute(
            select(OrderStatusHistory.new_status, OrderStatusHistory.changed_by)
            .where(OrderStatusHistory.order_id == order.id)
            .order_by(OrderStatusHistory.id)
        )).all()
        assert [tuple(h) for h in history] == [
            (STATUS_AWAITING_PAYMENT, "system"),
            (STATUS_CONFIRMED, "mercadopago"),
        ]
        email_types = (await session.execute(select(EmailLog.email_type))).scalars().all()
        assert email_types == ["payment_confirmation"]


@pytest.mark.asyncio
async def test_card_payment_pending_keeps_order_awaiting(
    client: AsyncClient, test_event, test_address, customer_headers
):
    module = gateway(create={"id": 9002, "status": "in_process", "status_detail": "pending_contingency"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address),
            headers=customer_headers,
        )
    assert response.status_code == 200
    assert response.json()["order_status"] == STATUS_AWAITING_PAYMENT


@pytest.mark.asyncio
async def test_card_payment_rejected_creates_no_order(
    client: AsyncClient, test_event, test_address, customer_headers
):
    module = gateway(create={"id": 9003, "status": "rejected", "status_detail": "cc_rejected_insufficient_amount"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address),
            headers=customer_headers,
        )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "PAYMENT_REJECTED"
    assert detail["status_detail"] == "cc_rejected_insufficient_amount"
    async with TestSessionLocal() as session:
        assert await session.scalar(select(func.count(Order.id))) == 0


@pytest.mark.asyncio
async def test_card_payment_duplicate_key(
    client: AsyncClient, test_event, test_customer, test_address, customer_headers, make_order
):
    existing = await make_order(test_event, test_customer, test_address, idempotency_key="card-dup")
    module = gateway(create={"id": 9004, "status": "approved"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address, idempotency_key="card-dup"),
            headers=customer_headers,
        )

    assert response.status_code == 409
    assert response.json()["detail"]["order_number"] == existing.order_number
    module.SDK.return_value.payment.return_value.create.assert_not_called()


@pytest.mark.asyncio
async def test_card_payment_key_of_another_customer(
    client: AsyncClient, test_event, test_customer, test_address, other_customer, make_order
):
    existing = await make_order(test_event, test_customer, test_address, idempotency_key="card-maria")
    module = gateway(create={"id": 9006, "status": "approved"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address, idempotency_key="card-maria"),
            headers=customer_auth_header(other_customer.id),
        )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "IDEMPOTENCY_KEY_CONFLICT"
    assert "order_number" not in detail
    assert existing.order_number not in response.text
    module.SDK.return_value.payment.return_value.create.assert_not_called()


@pytest.mark.asyncio
async def test_card_payment_amount_mismatch(client: AsyncClient, test_event, test_address, customer_headers):
    module = gateway(create={"id": 9005, "status": "approved"})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address, amount=10.0),
            headers=customer_headers,
        )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "AMOUNT_MISMATCH"
    assert detail["expected_amount"] == 12.0
    module.SDK.return_value.payment.return_value.create.assert_not_called()


@pytest.mark.asyncio
async def test_card_payment_gateway_error(client: AsyncClient, test_event, test_address, customer_headers):
    module = gateway(create={"message": "invalid token"}, create_status=400)
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/process-card-payment",
            json=card_payload(test_event, test_address),
            headers=customer_headers,
        )
    assert response.status_code == 502
    assert "invalid token" in response.json()["detail"]


# ============================================
# PIX
# ============================================

@pytest.mark.asyncio
async def test_create_pix_payment(client: AsyncClient, test_order, customer_headers):
    module = gateway(create={
        "id": 7001,
        "status": "pending",
        "point_of_interaction": {"transaction_data": {
            "qr_code": "00020126580014br.gov.bcb.pix",
            "qr_code_base64": "iVBORw0KGgo=",
            "ticket_url": "https://www.mercadopago.com.br/payments/7001/ticket",
        }},
    })
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/create-pix-payment",
            json={"order_number": test_order.order_number},
            headers=customer_headers,
        )

    assert response.status_code == 200
    data = response.json()
    assert data["payment_id"] == "7001"
    assert data["qr_code"].startswith("000201")
    assert data["ticket_url"].endswith("/ticket")

    payload, _ = module.SDK.return_value.payment.return_value.create.call_args.args
    assert payload["payment_method_id"] == "pix"
    assert payload["payer"]["first_name"] == "Maria"
    assert payload["payer"]["last_name"] == "da Silva"

    order = await load_order(test_order.id)
    assert order.payment_id == "7001"
    assert order.payment_status == "pending"


@pytest.mark.asyncio
async def test_pix_for_confirmed_order_is_rejected(
    client: AsyncClient, test_event, test_customer, test_address, customer_headers, make_order
):
    order = await make_order(test_event, test_customer, test_address, status=STATUS_CONFIRMED)
    with patch("backend.app.services.payment.mercadopago", gateway()):
        response = await client.post(
            "/api/mercadopago/create-pix-payment",
            json={"order_number": order.order_number},
            headers=customer_headers,
        )
    assert response.status_code == 400


# ============================================
# Status poll and webhook
# ============================================

@pytest.mark.asyncio
async def test_payment_status_poll_confirms_order(client: AsyncClient, test_order, customer_headers):
    module = gateway(get={"id": 7001, "status": "approved", "status_detail": "accredited",
                          "external_reference": test_order.order_number})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.get("/api/mercadopago/payment-status/7001", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["order_status"] == STATUS_CONFIRMED
    order = await load_order(test_order.id)
    assert order.status == STATUS_CONFIRMED
    assert order.payment_id == "7001"


@pytest.mark.asyncio
async def test_payment_status_poll_other_customer(
    client: AsyncClient, test_order, other_customer
):
    from backend.tests.conftest import customer_auth_header

    module = gateway(get={"id": 7001, "status": "approved", "external_reference": test_order.order_number})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.get(
            "/api/mercadopago/payment-status/7001", headers=customer_auth_header(other_customer.id)
        )
    assert response.status_code == 403
    assert (await load_order(test_order.id)).status == STATUS_AWAITING_PAYMENT


@pytest.mark.asyncio
async def test_webhook_approves_order(client: AsyncClient, test_order):
    module = gateway(get={"id": 8001, "status": "approved", "external_reference": test_order.order_number})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/webhook?data.id=8001&type=payment",
            json={"action": "payment.updated", "data": {"id": "8001"}},
            headers=signed_headers("8001"),
        )

    assert response.status_code == 200
    module.SDK.return_value.payment.return_value.get.assert_called_once_with("8001")
    order = await load_order(test_order.id)
    assert order.status == STATUS_CONFIRMED
    assert order.payment_status == PAYMENT_APPROVED


@pytest.mark.asyncio
async def test_webhook_rejected_payment_cancels_order(client: AsyncClient, test_order):
    module = gateway(get={"id": 8002, "status": "rejected", "external_reference": test_order.order_number})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/webhook",
            json={"action": "payment.updated", "data": {"id": "8002"}},
            headers=signed_headers("8002"),
        )
    assert response.status_code == 200
    assert (await load_order(test_order.id)).status == STATUS_CANCELLED


@pytest.mark.asyncio
async def test_webhook_invalid_signature(client: AsyncClient, test_order):
    module = gateway()
    headers = signed_headers("8003")
    headers["x-signature"] = headers["x-signature"].rsplit("=", 1)[0] + "=forged"
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/webhook",
            json={"action": "payment.updated", "data": {"id": "8003"}},
            headers=headers,
        )
    assert response.status_code == 401
    module.SDK.return_value.payment.return_value.get.assert_not_called()


@pytest.mark.asyncio
async def test_webhook_expired_signature(client: AsyncClient, test_order):
    module = gateway()
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/webhook",
            json={"action": "payment.updated", "data": {"id": "8004"}},
            headers=signed_headers("8004", ts=int(time.time()) - 600),
        )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_ignores_other_topics(client: AsyncClient):
    module = gateway()
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            "/api/mercadopago/webhook",
            json={"type": "merchant_order", "data": {"id": "55"}},
            headers=signed_headers("55"),
        )
    assert response.status_code == 200
    module.SDK.return_value.payment.return_value.get.assert_not_called()


async def test_approval_after_cancellation_is_refunded(
    test_session: AsyncSession, test_event, test_customer, test_address, make_order
):
    order = await make_order(
        test_event, test_customer, test_address, status=STATUS_CANCELLED, payment_id="8005",
    )
    module = gateway(get={"id": 8005, "status": "approved", "external_reference": order.order_number})

    async with TestSessionLocal() as session:
        with patch("backend.app.services.payment.mercadopago", module):
            result = await PaymentService(session).process_webhook(
                {"action": "payment.updated", "data": {"id": "8005"}}
            )
        await session.commit()

    assert result == "processed"
    module.SDK.return_value.refund.return_value.create.assert_called_once_with("8005")
    refreshed = await load_order(order.id)
    assert refreshed.status == STATUS_CANCELLED
    assert refreshed.payment_status == PAYMENT_REFUNDED


async def test_webhook_for_unknown_order(test_session: AsyncSession):
    module = gateway(get={"id": 8006, "status": "approved", "external_reference": "KR2026000999"})
    with patch("backend.app.services.payment.mercadopago", module):
        result = await PaymentService(test_session).process_webhook({"type": "payment", "data": {"id": "8006"}})
    assert result == "order_not_found"


# ============================================
# Refunds
# ============================================

@pytest.mark.asyncio
async def test_admin_refund(
    client: AsyncClient, test_event, test_customer, test_address, admin_headers, make_order
):
    order = await make_order(
        test_event, test_customer, test_address,
        status=STATUS_CONFIRMED, payment_id="6001", payment_status=PAYMENT_APPROVED, payment_method="credit",
    )
    module = gateway(refund={"id": 321})
    with patch("backend.app.services.payment.mercadopago", module):
        response = await client.post(
            f"/api/admin/orders/{order.id}/refund", json={"reason": "Cliente desistiu"}, headers=admin_headers
        )

    assert response.status_code == 200
    data = response.json()
    assert data["refund_id"] == 321
    assert data["payment_status"] == PAYMENT_REFUNDED
    assert data["status"] == STATUS_CANCELLED


async def test_refund_requires_approved_payment(test_session: AsyncSession, test_order):
    with patch("backend.app.services.payment.mercadopago", gateway()):
        with pytest.raises(PaymentOrderStateError):
            await PaymentService(test_session).refund_order(test_order.id)
