"""Back-office endpoints. Every route requires an admin token."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error, client_ip
from backend.app.core.auth import AdminPrincipal, require_admin
from backend.app.core.constants import CHANGED_BY_ADMIN
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.schemas import (
    AdminOrderUpdate,
    BulkStatusUpdate,
    CouponCreate,
    CouponUpdate,
    CustomerAdminCreate,
    CustomerUpdate,
    EventCreate,
    EventUpdate,
    OrderStatusUpdate,
    PolicyCreate,
    PolicyUpdate,
    RefundBody,
    TestEmailBody,
)
from backend.app.services.admin_users import AdminUserService
from backend.app.services.cache import CacheService
from backend.app.services.coupons import CouponService
from backend.app.services.customers import CustomerService
from backend.app.services.email import EmailService
from backend.app.services.events import EventService
from backend.app.services.orders import OrderService
from backend.app.services.payment import PaymentService
from backend.app.services.policies import PolicyService
from backend.app.services.reports import ReportService

router = APIRouter()
logger = get_logger(__name__)


def _admin_name(admin: AdminPrincipal) -> str:
    return admin.username


def _csv_response(content: str, filename: str) -> Response:
    # BOM so spreadsheet apps detect UTF-8
    return Response(
        content="\ufeff" + content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================
# DASHBOARD
# ============================================

@router.get("/stats")
async def get_stats(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await OrderService(session).get_stats()


# ============================================
# EVENTOS
# ============================================

@router.get("/events")
async def list_events(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    return await EventService(session, cache).list_all()


@router.post("/events", status_code=201)
async def create_event(
    data: EventCreate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await EventService(session, cache).create_event(data.model_dump(exclude_none=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/events/{event_id}")
async def get_event(
    event_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        event = await EventService(session, cache).get_event(event_id)
    except ServiceError as e:
        await raise_service_error(session, e)
    return EventService.event_to_dict(event)


@router.put("/events/{event_id}")
async def update_event(
    event_id: int,
    data: EventUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await EventService(session, cache).update_event(event_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.patch("/events/{event_id}/toggle")
async def toggle_event(
    event_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await EventService(session, cache).toggle_availability(event_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        await EventService(session, cache).delete_event(event_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}


@router.get("/events/{event_id}/orders")
async def list_event_orders(
    event_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await OrderService(session).list_event_orders(event_id)
    except ServiceError as e:
        await raise_service_error(session, e)


# ============================================
# PEDIDOS
# ============================================

@router.get("/orders")
async def list_orders(
    status: Optional[str] = None,
    event_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await OrderService(session).list_orders(
        status=status, event_id=event_id, search=search,
        date_from=date_from, date_to=date_to, page=page, limit=limit,
    )


@router.get("/orders/{order_id}")
async def get_order(
    order_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    service = OrderService(session)
    try:
        order = await service.get_order(order_id)
    except ServiceError as e:
        await raise_service_error(session, e)
    return service.order_to_dict(order)


@router.put("/orders/{order_id}")
async def update_order(
    order_id: int,
    data: AdminOrderUpdate,
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Correct the delivery address or athlete data of an order."""
    payload = data.model_dump(exclude_unset=True)
    if data.address is not None:
        payload["address"] = data.address.model_dump(exclude_unset=True)
    try:
        result = await OrderService(session).admin_update_order(order_id, payload)
        await AdminUserService(session).audit(admin.admin_user_id, "order_edited", {"order_id": order_id},
                                              client_ip(request))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    service = OrderService(session)
    try:
        order = await service.get_order(order_id)
        previous_status = order.status
        changed = await service.update_status(
            order, data.status, changed_by=CHANGED_BY_ADMIN, changed_by_name=_admin_name(admin),
            reason=data.reason, send_email=data.send_email,
        )
        if changed:
            await AdminUserService(session).audit(
                admin.admin_user_id, "order_status_changed",
                {"order_number": order.order_number, "from": previous_status, "to": data.status},
                client_ip(request),
            )
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    result = service.order_to_dict(order)
    result["changed"] = changed
    return result


@router.post("/orders/bulk-status")
async def bulk_update_status(
    data: BulkStatusUpdate,
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await OrderService(session).bulk_update_status(
            data.order_ids, data.status, changed_by=CHANGED_BY_ADMIN, changed_by_name=_admin_name(admin),
            reason=data.reason, send_email=data.send_email,
        )
        await AdminUserService(session).audit(
            admin.admin_user_id, "order_status_bulk",
            {"bulk_operation_id": result["bulk_operation_id"], "to": data.status, "orders": data.order_ids},
            client_ip(request),
        )
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/orders/{order_id}/history")
async def get_order_history(
    order_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await OrderService(session).get_status_history(order_id)
    except ServiceError as e:
        await raise_service_error(session, e)


@router.post("/orders/{order_id}/refund")
async def refund_order(
    order_id: int,
    data: RefundBody,
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await PaymentService(session).refund_order(order_id, _admin_name(admin), data.reason)
        await AdminUserService(session).audit(admin.admin_user_id, "order_refunded", {"order_id": order_id},
                                              client_ip(request))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


# ============================================
# CLIENTES
# ============================================

@router.get("/customers")
async def list_customers(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await CustomerService(session).search_customers(search=search, page=page, limit=limit)


@router.post("/customers", status_code=201)
async def create_customer(
    data: CustomerAdminCreate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    service = CustomerService(session)
    try:
        customer = await service.create_customer(data.model_dump())
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return await service.get_customer_details(customer.id)


@router.get("/customers/{customer_id}")
async def get_customer(
    customer_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await CustomerService(session).get_customer_details(customer_id)
    except ServiceError as e:
        await raise_service_error(session, e)


@router.put("/customers/{customer_id}")
async def update_customer(
    customer_id: int,
    data: CustomerUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        customer = await CustomerService(session).update_customer(customer_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return CustomerService.customer_to_dict(customer)


@router.delete("/customers/{customer_id}")
async def delete_customer(
    customer_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        await CustomerService(session).delete_customer(customer_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}


@router.get("/customers/{customer_id}/orders")
async def list_customer_orders(
    customer_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await OrderService(session).list_customer_orders(customer_id)


@router.get("/customers/{customer_id}/policy-acceptances")
async def list_customer_acceptances(
    customer_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await PolicyService(session).customer_acceptances(customer_id)


# ============================================
# CUPONS
# ============================================

@router.get("/coupons")
async def list_coupons(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await CouponService(session).list_coupons()


@router.post("/coupons", status_code=201)
async def create_coupon(
    data: CouponCreate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await CouponService(session).create_coupon(data.model_dump())
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/coupons/{coupon_id}")
async def get_coupon(
    coupon_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        coupon = await CouponService(session).get_coupon(coupon_id)
    except ServiceError as e:
        await raise_service_error(session, e)
    return CouponService.coupon_to_dict(coupon)


@router.put("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    data: CouponUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await CouponService(session).update_coupon(coupon_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.delete("/coupons/{coupon_id}")
async def delete_coupon(
    coupon_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        await CouponService(session).delete_coupon(coupon_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}


# ============================================
# POLÍTICAS
# ============================================

@router.get("/policies")
async def list_policies(
    type: Optional[str] = None,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await PolicyService(session).list_policies(type)
    except ServiceError as e:
        await raise_service_error(session, e)


@router.post("/policies", status_code=201)
async def create_policy(
    data: PolicyCreate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await PolicyService(session).create_policy(data.type, data.title, data.content, data.active)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/policies/{policy_id}")
async def get_policy(
    policy_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        policy = await PolicyService(session).get_policy(policy_id)
    except ServiceError as e:
        await raise_service_error(session, e)
    return PolicyService.policy_to_dict(policy)


@router.put("/policies/{policy_id}")
async def update_policy(
    policy_id: int,
    data: PolicyUpdate,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await PolicyService(session).update_policy(policy_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return result


@router.delete("/policies/{policy_id}")
async def delete_policy(
    policy_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        await PolicyService(session).delete_policy(policy_id)
        await session.commit()
    except ServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}


# ============================================
# RELATÓRIOS
# ============================================

@router.get("/reports/events")
async def report_events(
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await ReportService(session).events_for_reports()


@router.get("/reports/kits/{event_id}")
async def report_kits(
    event_id: int,
    include_cancelled: bool = False,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        content = await ReportService(session).kits_report_csv(event_id, include_cancelled)
    except ServiceError as e:
        await raise_service_error(session, e)
    return _csv_response(content, f"kits_evento_{event_id}.csv")


@router.get("/reports/orders")
async def report_orders(
    status: Optional[str] = None,
    event_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    content = await ReportService(session).orders_report_csv(status, event_id, search, date_from, date_to)
    return _csv_response(content, "pedidos.csv")


# ============================================
# EMAIL
# ============================================

@router.get("/email-logs")
async def list_email_logs(
    status: Optional[str] = None,
    email_type: Optional[str] = None,
    recipient: Optional[str] = None,
    order_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await EmailService(session).list_logs(
        status=status, email_type=email_type, recipient=recipient, order_id=order_id, page=page, limit=limit,
    )


@router.post("/email/test")
async def send_test_email(
    data: TestEmailBody,
    admin: AdminPrincipal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    success = await EmailService(session).send_test_email(data.to)
    await session.commit()
    return {"success": success}
