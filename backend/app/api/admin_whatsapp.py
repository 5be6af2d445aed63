"""Back-office WhatsApp endpoints: templates, sends and history."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, raise_service_error
from backend.app.core.auth import AdminPrincipal, require_admin
from backend.app.core.exceptions import ServiceError
from backend.app.schemas import (
    WhatsappSendBody,
    WhatsappTemplateBody,
    WhatsappTemplateUpdate,
    WhatsappTestBody,
)
from backend.app.services.whatsapp import PLACEHOLDERS, WhatsAppService

router = APIRouter()


@router.get("/connection")
async def check_connection(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await WhatsAppService(session).check_connection()


@router.get("/placeholders")
async def list_placeholders(admin: AdminPrincipal = Depends(require_admin)):
    return PLACEHOLDERS


@router.get("/templates")
async def list_templates(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    service = WhatsAppService(session)
    # The default template is created on first access
    await service.get_active_template()
    await session.commit()
    return await service.list_templates()


@router.post("/templates", status_code=201)
async def create_template(
    data: WhatsappTemplateBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    result = await WhatsAppService(session).create_template(data.name, data.content, data.is_active)
    await session.commit()
    return result


@router.put("/templates/{template_id}")
async def update_template(
    template_id: int,
    data: WhatsappTemplateUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await WhatsAppService(session).update_template(template_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/preview/{order_id}")
async def preview_message(
    order_id: int,
    delivery_date: Optional[str] = None,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        message = await WhatsAppService(session).preview_order_message(order_id, delivery_date)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"message": message}


@router.post("/send")
async def send_order_message(
    data: WhatsappSendBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Send the order confirmation; failures are logged as a message with status ``error``."""
    try:
        result = await WhatsAppService(session).send_order_confirmation(data.order_id, data.delivery_date)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.post("/test")
async def send_test_message(
    data: WhatsappTestBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    result = await WhatsAppService(session).send_test_message(data.phone, data.message)
    await session.commit()
    return result


@router.get("/history")
async def message_history(
    order_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await WhatsAppService(session).message_history(page=page, limit=limit, order_id=order_id)
