# backend/app/services/whatsapp.py
"""WhatsApp order confirmations through the WhatsApp gateway API."""
import re
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import httpx
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import WHATSAPP_ERROR, WHATSAPP_PENDING, WHATSAPP_SENT
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import notifications_sent_total
from backend.app.core.settings import get_settings
from backend.app.models.notification import WhatsappMessage, WhatsappTemplate
from backend.app.models.order import Order

logger = get_logger(__name__)

DEFAULT_TEMPLATE_NAME = "Confirmação de pedido"
DEFAULT_TEMPLATE = """Olá, *{{cliente}}*!
Confirmamos sua solicitação de *[Retirada do Kit] {{evento}}*.

Você solicitou a retirada de *{{qtd_kits}}* kits para os seguintes atletas:

{{lista_kits}}

Vamos retirar seu kit, previsão de entrega é para amanhã dia {{data_entrega}}.
Logo mais entraremos em contato e faremos a entrega no endereço informado no pedido.

Qualquer dúvida, estamos à disposição."""

PLACEHOLDERS = [
    {"key": "{{cliente}}", "description": "Nome do cliente"},
    {"key": "{{evento}}", "description": "Nome do evento"},
    {"key": "{{qtd_kits}}", "description": "Quantidade de kits"},
    {"key": "{{lista_kits}}", "description": "Lista dos nomes dos atletas"},
    {"key": "{{data_entrega}}", "description": "Data prevista de entrega"},
    {"key": "{{numero_pedido}}", "description": "Número do pedido"},
]


class WhatsAppServiceError(ServiceError):
    """Base exception for WhatsApp service errors."""


class WhatsAppTemplateNotFoundError(WhatsAppServiceError):
    def __init__(self, template_id: int):
        super().__init__(f"Template {template_id} não encontrado", 404)


class WhatsAppOrderNotFoundError(WhatsAppServiceError):
    def __init__(self, order_id: int):
        super().__init__(f"Pedido {order_id} não encontrado", 404)


def format_phone_number(phone: str) -> str:
    """Digits only, with the Brazil country code (55) prefixed when missing."""
    cleaned = re.sub(r"\D", "", phone or "")
    if not cleaned.startswith("55"):
        return "55" + cleaned
    return cleaned


def replace_placeholders(template: str, values: Dict[str, str]) -> str:
    message = template
    for key, value in values.items():
        message = message.replace("{{" + key + "}}", str(value))
    return message


def order_placeholders(order: Order, delivery_date: Optional[str] = None) -> Dict[str, str]:
    if not delivery_date:
        delivery_date = (datetime.utcnow() + timedelta(days=1)).strftime("%d/%m/%Y")
    kits_list = "\n".join(
        f"{index}. {kit.name} - Tamanho: {kit.shirt_size}" for index, kit in enumerate(order.kits, start=1)
    )
    return {
        "cliente": order.customer.name if order.customer else "",
        "evento": order.event.name if order.event else "",
        "qtd_kits": str(order.kit_quantity),
        "lista_kits": kits_list,
        "data_entrega": delivery_date,
        "numero_pedido": order.order_number,
    }


async def _post_message(phone: str, message: str) -> Dict[str, Any]:
    """
    POST {WHATSAPP_API_URL}/send-message.

    Returns the gateway response ``{"status": "success"|"error", "jobId"?, "description"}``.
    """
    settings = get_settings()
    if not settings.WHATSAPP_API_URL:
        logger.warning("WHATSAPP_API_URL not set, skip WhatsApp message")
        return {"status": "error", "description": "API do WhatsApp não configurada"}
    url = f"{settings.WHATSAPP_API_URL.rstrip('/')}/send-message"
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            r = await client.post(
                url,
                json={"number": phone, "message": message},
                headers={"Authorization": f"Bearer {settings.WHATSAPP_API_TOKEN or ''}"},
            )
            if r.is_success:
                return r.json()
            logger.warning("WhatsApp send-message failed", status=r.status_code, body=r.text[:500])
            try:
                description = r.json().get("description")
            except ValueError:
                description = None
            return {"status": "error", "description": description or f"HTTP {r.status_code}"}
    except httpx.HTTPError as e:
        logger.error("WhatsApp send-message request error", error=str(e))
        return {"status": "error", "description": str(e) or "Erro ao enviar mensagem"}


class WhatsAppService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ----- Templates -----

    async def get_active_template(self) -> WhatsappTemplate:
        """Most recent active template; the default one is created on first use."""
        result = await self.session.execute(
            select(WhatsappTemplate)
            .where(WhatsappTemplate.is_active == True)
            .order_by(WhatsappTemplate.created_at.desc(), WhatsappTemplate.id.desc())
            .limit(1)
        )
        template = result.scalar_one_or_none()
        if template is None:
            template = WhatsappTemplate(name=DEFAULT_TEMPLATE_NAME, content=DEFAULT_TEMPLATE, is_active=True)
            self.session.add(template)
            await self.session.flush()
            logger.info("Default WhatsApp template created", template_id=template.id)
        return template

    async def list_templates(self) -> List[Dict[str, Any]]:
        result = await self.session.execute(select(WhatsappTemplate).order_by(WhatsappTemplate.id))
        return [self.template_to_dict(t) for t in result.scalars().all()]

    async def create_template(self, name: str, content: str, is_active: bool = True) -> Dict[str, Any]:
        if is_active:
            await self._deactivate_all()
        template = WhatsappTemplate(name=name, content=content, is_active=is_active)
        self.session.add(template)
        await self.session.flush()
        return self.template_to_dict(template)

    async def update_template(self, template_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        template = await self.session.get(WhatsappTemplate, template_id)
        if not template:
            raise WhatsAppTemplateNotFoundError(template_id)
        if data.get("is_active"):
            await self._deactivate_all()
        for field in ("name", "content", "is_active"):
            if data.get(field) is not None:
                setattr(template, field, data[field])
        await self.session.flush()
        return self.template_to_dict(template)

    async def _deactivate_all(self) -> None:
        await self.session.execute(update(WhatsappTemplate).values(is_active=False))

    # ----- Messages -----

    async def _send_and_log(self, phone: str, content: str, order_id: Optional[int] = None) -> Dict[str, Any]:
        message = WhatsappMessage(order_id=order_id, phone=phone, content=content, status=WHATSAPP_PENDING)
        self.session.add(message)
        await self.session.flush()

        response = await _post_message(phone, content)
        if response.get("status") == "success":
            message.status = WHATSAPP_SENT
            message.job_id = response.get("jobId")
            message.sent_at = datetime.utcnow()
        else:
            message.status = WHATSAPP_ERROR
            message.error = response.get("description") or "Erro ao enviar mensagem"
        await self.session.flush()
        notifications_sent_total.labels(channel="whatsapp", status=message.status).inc()
        logger.info("WhatsApp message processed", order_id=order_id, status=message.status, job_id=message.job_id)
        return {
            "success": message.status == WHATSAPP_SENT,
            "message_id": message.id,
            "job_id": message.job_id,
            "error": message.error,
        }

    async def send_order_confirmation(self, order_id: int, delivery_date: Optional[str] = None) -> Dict[str, Any]:
        order = await self.session.get(Order, order_id)
        if not order:
            raise WhatsAppOrderNotFoundError(order_id)
        template = await self.get_active_template()
        content = replace_placeholders(template.content, order_placeholders(order, delivery_date))
        phone = format_phone_number(order.customer.phone if order.customer else "")
        return await self._send_and_log(phone, content, order_id=order.id)

    async def send_test_message(self, phone: str, message: str) -> Dict[str, Any]:
        return await self._send_and_log(format_phone_number(phone), message)

    async def preview_order_message(self, order_id: int, delivery_date: Optional[str] = None) -> str:
        order = await self.session.get(Order, order_id)
        if not order:
            raise WhatsAppOrderNotFoundError(order_id)
        template = await self.get_active_template()
        return replace_placeholders(template.content, order_placeholders(order, delivery_date))

    async def message_history(self, page: int = 1, limit: int = 20, order_id: Optional[int] = None) -> Dict[str, Any]:
        conditions = [WhatsappMessage.order_id == order_id] if order_id else []
        total = int(await self.session.scalar(select(func.count(WhatsappMessage.id)).where(*conditions)) or 0)
        result = await self.session.execute(
            select(WhatsappMessage).where(*conditions)
            .order_by(WhatsappMessage.created_at.desc(), WhatsappMessage.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        messages = [
            {
                "id": m.id,
                "order_id": m.order_id,
                "phone": m.phone,
                "content": m.content,
                "status": m.status,
                "job_id": m.job_id,
                "error": m.error,
                "sent_at": m.sent_at.isoformat() if m.sent_at else None,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in result.scalars().all()
        ]
        return {"messages": messages, "total": total, "pages": (total + limit - 1) // limit if limit else 1}

    async def check_connection(self) -> Dict[str, Any]:
        """Probe the gateway's /qrcode endpoint."""
        settings = get_settings()
        if not settings.WHATSAPP_API_URL:
            return {"success": False, "connection_status": "not_configured",
                    "message": "API do WhatsApp não configurada"}
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                r = await client.get(
                    f"{settings.WHATSAPP_API_URL.rstrip('/')}/qrcode",
                    headers={"Authorization": f"Bearer {settings.WHATSAPP_API_TOKEN or ''}"},
                )
            data = r.json() if r.content else {}
        except (httpx.HTTPError, ValueError) as e:
            logger.error("WhatsApp connection check failed", error=str(e))
            return {"success": False, "connection_status": "disconnected", "message": str(e)}

        description = data.get("description") or ""
        if data.get("status") == "error" and "conectado" in description:
            return {"success": True, "connection_status": "connected", "message": "WhatsApp conectado com sucesso"}
        if data.get("status") == "success" or data.get("qrCode"):
            return {
                "success": True,
                "connection_status": "connecting",
                "message": "API WhatsApp funcionando - aguardando conexão",
                "qr_code": data.get("qrCode"),
            }
        return {"success": False, "connection_status": "disconnected", "message": description}

    @staticmethod
    def template_to_dict(template: WhatsappTemplate) -> Dict[str, Any]:
        return {
            "id": template.id,
            "name": template.name,
            "content": template.content,
            "is_active": bool(template.is_active),
            "created_at": template.created_at.isoformat() if template.created_at else None,
        }
