"""Customer identification, profile and address book."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, raise_service_error
from backend.app.core.auth import get_current_customer
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.schemas import (
    AddressBody,
    AddressUpdate,
    CustomerIdentify,
    CustomerRegister,
    CustomerUpdate,
)
from backend.app.services.customers import CustomerService, CustomerServiceError
from backend.app.services.orders import OrderService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/customers/identify")
@limiter.limit("10/minute")
async def identify_customer(
    request: Request,
    data: CustomerIdentify,
    session: AsyncSession = Depends(get_session),
):
    """Login by CPF + birth date. 404 with ``can_register`` when no customer matches."""
    try:
        return await CustomerService(session).identify(data.cpf, data.birth_date)
    except CustomerServiceError as e:
        await raise_service_error(session, e)


@router.post("/customers/register", status_code=201)
@limiter.limit("5/minute")
async def register_customer(
    request: Request,
    data: CustomerRegister,
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await CustomerService(session).register(data.model_dump())
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return result


@router.get("/customers/me")
async def get_profile(
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await CustomerService(session).get_customer_details(customer_id)
    except CustomerServiceError as e:
        await raise_service_error(session, e)


@router.put("/customers/me")
async def update_profile(
    data: CustomerUpdate,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        customer = await CustomerService(session).update_customer(customer_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return CustomerService.customer_to_dict(customer)


@router.get("/customers/me/orders")
async def my_orders(
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    return await OrderService(session).list_customer_orders(customer_id)


# --- Endereços ---

@router.get("/customers/me/addresses")
async def list_addresses(
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    addresses = await CustomerService(session).list_addresses(customer_id)
    return [CustomerService.address_to_dict(a) for a in addresses]


@router.post("/customers/me/addresses", status_code=201)
async def add_address(
    data: AddressBody,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        address = await CustomerService(session).add_address(customer_id, data.model_dump())
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return CustomerService.address_to_dict(address)


@router.put("/customers/me/addresses/{address_id}")
async def update_address(
    address_id: int,
    data: AddressUpdate,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        address = await CustomerService(session).update_address(
            customer_id, address_id, data.model_dump(exclude_unset=True)
        )
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return CustomerService.address_to_dict(address)


@router.patch("/customers/me/addresses/{address_id}/default")
async def set_default_address(
    address_id: int,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        address = await CustomerService(session).set_default_address(customer_id, address_id)
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return CustomerService.address_to_dict(address)


@router.delete("/customers/me/addresses/{address_id}")
async def delete_address(
    address_id: int,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        await CustomerService(session).delete_address(customer_id, address_id)
        await session.commit()
    except CustomerServiceError as e:
        await raise_service_error(session, e)
    return {"status": "ok"}
