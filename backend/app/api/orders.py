"""Customer order endpoints."""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, get_cache, raise_service_error
from backend.app.core.auth import get_current_customer
from backend.app.core.exceptions import ServiceError
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.schemas import OrderCreate
from backend.app.services.cache import CacheService
from backend.app.services.orders import OrderService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/orders", status_code=201)
@limiter.limit("10/minute")
async def create_order(
    request: Request,
    response: Response,
    data: OrderCreate,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """
    Create an order awaiting payment (PIX flow).

    A repeated ``idempotency_key`` returns the order of the first request
    with ``is_duplicate: true`` and status 200.
    """
    logger.info(
        "Creating order",
        customer_id=customer_id,
        event_id=data.event_id,
        kit_quantity=data.kit_quantity,
        payment_method=data.payment_method,
    )
    service = OrderService(session, cache)
    try:
        order, created = await service.create_order(
            customer_id=customer_id,
            event_id=data.event_id,
            address_id=data.address_id,
            kit_quantity=data.kit_quantity,
            kits=[k.model_dump() for k in data.kits],
            payment_method=data.payment_method,
            coupon_code=data.coupon_code,
            idempotency_key=data.idempotency_key,
        )
        await session.commit()
    except ServiceError as e:
        logger.warning("Order creation failed", customer_id=customer_id, error=e.message, error_code=e.status_code)
        await raise_service_error(session, e)

    if data.total_cost is not None and abs(data.total_cost - order.total_cost) > 0:
        logger.info("Client total differs from server total", order_number=order.order_number,
                    client_total=float(data.total_cost), server_total=float(order.total_cost))
    if not created:
        response.status_code = 200
    result = service.order_to_dict(order)
    result["is_duplicate"] = not created
    return result


@router.get("/orders/{order_number}")
async def get_order(
    order_number: str,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    service = OrderService(session)
    try:
        order = await service.get_customer_order(customer_id, order_number)
    except ServiceError as e:
        await raise_service_error(session, e)
    return service.order_to_dict(order)


@router.get("/orders/{order_number}/history")
async def get_order_history(
    order_number: str,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    service = OrderService(session)
    try:
        order = await service.get_customer_order(customer_id, order_number)
        return await service.get_status_history(order.id)
    except ServiceError as e:
        await raise_service_error(session, e)
