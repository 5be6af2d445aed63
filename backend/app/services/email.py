# backend/app/services/email.py
"""Transactional email through SendGrid or Resend, with a delivery log."""
from html import escape
from typing import Optional, Dict, Any, List, Tuple

import httpx
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    EMAIL_FAILED,
    EMAIL_SENT,
    ORDER_STATUS_LABELS,
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_IN_TRANSIT,
)
from backend.app.core.cpf import mask_cpf
from backend.app.core.logging import get_logger
from backend.app.core.metrics import notifications_sent_total
from backend.app.core.settings import get_settings
from backend.app.models.notification import EmailLog
from backend.app.models.order import Order

logger = get_logger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
RESEND_URL = "https://api.resend.com/emails"

EMAIL_SERVICE_CONFIRMATION = "service_confirmation"
EMAIL_PAYMENT_CONFIRMATION = "payment_confirmation"
EMAIL_PAYMENT_PENDING = "payment_pending"
EMAIL_PAYMENT_TIMEOUT = "payment_timeout"
EMAIL_STATUS_UPDATE = "status_update"
EMAIL_KIT_EN_ROUTE = "kit_en_route"
EMAIL_DELIVERY_CONFIRMATION = "delivery_confirmation"
EMAIL_TEST = "test"

EMAIL_TYPES = (
    EMAIL_SERVICE_CONFIRMATION,
    EMAIL_PAYMENT_CONFIRMATION,
    EMAIL_PAYMENT_PENDING,
    EMAIL_PAYMENT_TIMEOUT,
    EMAIL_STATUS_UPDATE,
    EMAIL_KIT_EN_ROUTE,
    EMAIL_DELIVERY_CONFIRMATION,
    EMAIL_TEST,
)


def _money(value) -> str:
    """R$ 1.234,56"""
    formatted = f"{float(value or 0):,.2f}"
    return "R$ " + formatted.replace(",", "X").replace(".", ",").replace("X", ".")


def order_context(order: Order) -> Dict[str, Any]:
    """Template values for an order with event, customer, address and kits loaded."""
    address = order.address
    return {
        "order_number": order.order_number,
        "customer_name": order.customer.name if order.customer else "",
        "event_name": order.event.name if order.event else "",
        "event_date": order.event.date.strftime("%d/%m/%Y") if order.event and order.event.date else "",
        "event_location": order.event.location if order.event else "",
        "kit_quantity": order.kit_quantity,
        "kits": [
            {"name": k.name, "cpf": mask_cpf(k.cpf), "shirt_size": k.shirt_size} for k in order.kits
        ],
        "address": (
            f"{address.street}, {address.number} - {address.neighborhood}, {address.city}/{address.state}"
            if address else ""
        ),
        "total": _money(order.total_cost),
        "status": order.status,
        "status_label": ORDER_STATUS_LABELS.get(order.status, order.status),
    }


def _layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html lang=\"pt-BR\"><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; color: #1f2937; max-width: 600px; margin: 0 auto;\">"
        "<h1 style=\"color: #5e17eb;\">KitRunner</h1>"
        f"{body}"
        "<p style=\"color: #6b7280; font-size: 12px;\">KitRunner - retirada e entrega de kits de corrida</p>"
        "</body></html>"
    )


def _order_summary(ctx: Dict[str, Any]) -> str:
    kits = "".join(
        f"<li>{escape(k['name'])} ({escape(k['cpf'])}) - camiseta {escape(k['shirt_size'])}</li>"
        for k in ctx["kits"]
    )
    return (
        f"<p><strong>Pedido:</strong> {escape(ctx['order_number'])}<br>"
        f"<strong>Evento:</strong> {escape(ctx['event_name'])} ({escape(ctx['event_date'])})<br>"
        f"<strong>Endereço de entrega:</strong> {escape(ctx['address'])}<br>"
        f"<strong>Total:</strong> {escape(ctx['total'])}</p>"
        f"<p><strong>Kits ({ctx['kit_quantity']}):</strong></p><ul>{kits}</ul>"
    )


def render_order_email(email_type: str, ctx: Dict[str, Any], previous_status: Optional[str] = None) -> Tuple[str, str]:
    """(subject, html) for an order email."""
    name = escape(ctx["customer_name"])
    number = ctx["order_number"]
    summary = _order_summary(ctx)

    if email_type == EMAIL_SERVICE_CONFIRMATION:
        subject = "Seu pedido de retirada de kit foi confirmado! 🎯"
        body = f"<p>Olá, {name}!</p><p>Recebemos seu pagamento e vamos retirar seu kit.</p>{summary}"
    elif email_type == EMAIL_PAYMENT_CONFIRMATION:
        subject = f"Pagamento confirmado - Pedido {number}"
        body = f"<p>Olá, {name}!</p><p>Seu pagamento foi aprovado.</p>{summary}"
    elif email_type == EMAIL_PAYMENT_PENDING:
        subject = f"Pedido {number} recebido - KitRunner"
        body = (
            f"<p>Olá, {name}!</p><p>Seu pedido foi criado e está aguardando pagamento. "
            "Pedidos não pagos em até 24 horas são cancelados automaticamente.</p>"
            f"{summary}"
        )
    elif email_type == EMAIL_PAYMENT_TIMEOUT:
        subject = f"Pedido {number} cancelado - pagamento não identificado"
        body = (
            f"<p>Olá, {name}!</p><p>Não identificamos o pagamento do seu pedido em 24 horas "
            "e ele foi cancelado. Você pode fazer um novo pedido a qualquer momento.</p>"
            f"{summary}"
        )
    elif email_type == EMAIL_KIT_EN_ROUTE:
        subject = f"Seu kit está a caminho! - {number}"
        body = f"<p>Olá, {name}!</p><p>Seu kit saiu para entrega. 🚚</p>{summary}"
    elif email_type == EMAIL_DELIVERY_CONFIRMATION:
        subject = "Seu kit chegou direitinho em sua casa! 🎉"
        body = f"<p>Olá, {name}!</p><p>Seu kit foi entregue. Boa prova!</p>{summary}"
    else:
        subject = f"Atualização do pedido {number} - KitRunner"
        previous = ORDER_STATUS_LABELS.get(previous_status, previous_status or "-")
        body = (
            f"<p>Olá, {name}!</p><p>O status do seu pedido mudou de "
            f"<strong>{escape(previous)}</strong> para <strong>{escape(ctx['status_label'])}</strong>.</p>"
            f"{summary}"
        )
    return subject, _layout(subject, body)


def email_type_for_status(new_status: str) -> str:
    """Which email a status transition sends."""
    if new_status == STATUS_CONFIRMED:
        return EMAIL_SERVICE_CONFIRMATION
    if new_status == STATUS_IN_TRANSIT:
        return EMAIL_KIT_EN_ROUTE
    if new_status == STATUS_DELIVERED:
        return EMAIL_DELIVERY_CONFIRMATION
    return EMAIL_STATUS_UPDATE


async def _post_sendgrid(to: str, subject: str, html: str) -> Optional[str]:
    settings = get_settings()
    payload = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": settings.EMAIL_FROM, "name": settings.EMAIL_FROM_NAME},
        "subject": subject,
        "content": [{"type": "text/html", "value": html}],
    }
    async with httpx.AsyncClient(timeout=15.0) as client:
        r = await client.post(
            SENDGRID_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        )
        r.raise_for_status()
        return r.headers.get("X-Message-Id")


async def _post_resend(to: str, subject: str, html: str) -> Optional[str]:
    settings = get_settings()
    payload = {
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": [to],
        "subject": subject,
        "html": html,
    }
    async with httpx.AsyncClient(timeout=15.0) as client:
        r = await client.post(
            RESEND_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        )
        r.raise_for_status()
        return r.json().get("id")


def _provider_configured(provider: str) -> bool:
    settings = get_settings()
    if not settings.EMAIL_FROM:
        return False
    if provider == "sendgrid":
        return bool(settings.SENDGRID_API_KEY)
    return bool(settings.RESEND_API_KEY)


class EmailService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def send(
        self,
        email_type: str,
        to: str,
        subject: str,
        html: str,
        order_id: Optional[int] = None,
        customer_id: Optional[int] = None,
    ) -> bool:
        """
        Deliver one email and log the attempt. Never raises on delivery failure.

        Returns True if the provider accepted the message.
        """
        provider = get_settings().EMAIL_PROVIDER
        message_id = None
        error = None

        if not to:
            error = "Destinatário sem e-mail"
        elif not _provider_configured(provider):
            logger.warning("Email provider not configured, skip email", provider=provider, email_type=email_type)
            error = f"Provedor de e-mail {provider} não configurado"
        else:
            try:
                if provider == "sendgrid":
                    message_id = await _post_sendgrid(to, subject, html)
                else:
                    message_id = await _post_resend(to, subject, html)
            except httpx.HTTPStatusError as e:
                error = f"HTTP {e.response.status_code}: {e.response.text[:500]}"
            except httpx.HTTPError as e:
                error = str(e) or e.__class__.__name__

        status = EMAIL_FAILED if error else EMAIL_SENT
        self.session.add(EmailLog(
            email_type=email_type,
            recipient=to or "",
            subject=subject,
            status=status,
            provider=provider,
            message_id=message_id,
            error=error,
            order_id=order_id,
            customer_id=customer_id,
        ))
        await self.session.flush()
        notifications_sent_total.labels(channel="email", status=status).inc()

        if error:
            logger.warning("Email not sent", email_type=email_type, order_id=order_id, error=error)
            return False
        logger.info("Email sent", email_type=email_type, order_id=order_id, provider=provider, message_id=message_id)
        return True

    async def send_order_email(self, order: Order, email_type: str, previous_status: Optional[str] = None) -> bool:
        subject, html = render_order_email(email_type, order_context(order), previous_status)
        return await self.send(
            email_type,
            order.customer.email if order.customer else "",
            subject,
            html,
            order_id=order.id,
            customer_id=order.customer_id,
        )

    async def send_test_email(self, to: str) -> bool:
        subject = "Teste de Integração - KitRunner"
        html = _layout(subject, "<p>Este é um e-mail de teste. A integração está funcionando.</p>")
        return await self.send(EMAIL_TEST, to, subject, html)

    async def list_logs(
        self,
        status: Optional[str] = None,
        email_type: Optional[str] = None,
        recipient: Optional[str] = None,
        order_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        conditions = []
        if status:
            conditions.append(EmailLog.status == status)
        if email_type:
            conditions.append(EmailLog.email_type == email_type)
        if recipient:
            conditions.append(func.lower(EmailLog.recipient).like(f"%{recipient.lower()}%"))
        if order_id:
            conditions.append(EmailLog.order_id == order_id)

        total = int(await self.session.scalar(select(func.count(EmailLog.id)).where(*conditions)) or 0)
        result = await self.session.execute(
            select(EmailLog).where(*conditions)
            .order_by(EmailLog.created_at.desc(), EmailLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        logs: List[Dict[str, Any]] = [
            {
                "id": log.id,
                "email_type": log.email_type,
                "recipient": log.recipient,
                "subject": log.subject,
                "status": log.status,
                "provider": log.provider,
                "message_id": log.message_id,
                "error": log.error,
                "order_id": log.order_id,
                "customer_id": log.customer_id,
                "created_at": log.created_at.isoformat() if log.created_at else None,
            }
            for log in result.scalars().all()
        ]
        return {"logs": logs, "total": total, "page": page, "limit": limit}
