"""Customer identification, profile and address book."""
from datetime import date
from typing import List, Dict, Any, Optional, Tuple

from sqlalchemy import select, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.auth import create_customer_token
from backend.app.core.cep import clean_cep, is_valid_cep
from backend.app.core.cpf import clean_cpf, is_valid_cpf, format_cpf
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.customer import Customer, Address
from backend.app.models.order import Order

logger = get_logger(__name__)

CUSTOMER_FIELDS = ("name", "birth_date", "email", "phone")
ADDRESS_FIELDS = ("label", "street", "number", "complement", "neighborhood", "city", "state", "zip_code")


class CustomerServiceError(ServiceError):
    """Base exception for customer service errors."""


class InvalidCpfError(CustomerServiceError):
    def __init__(self):
        super().__init__("CPF inválido", 400)


class InvalidZipCodeError(CustomerServiceError):
    def __init__(self, zip_code: str):
        super().__init__(f"CEP inválido: {zip_code}", 400)


class CustomerNotFoundError(CustomerServiceError):
    def __init__(self, customer_id: Optional[int] = None):
        super().__init__(
            "Cliente não encontrado" if customer_id is None else f"Cliente {customer_id} não encontrado", 404
        )


class CustomerNotIdentifiedError(CustomerServiceError):
    def __init__(self):
        super().__init__(
            "Cliente não encontrado. Verifique o CPF e a data de nascimento ou faça seu cadastro.",
            404,
            can_register=True,
        )


class CustomerExistsError(CustomerServiceError):
    def __init__(self):
        super().__init__("Já existe um cliente cadastrado com este CPF", 409)


class CustomerHasOrdersError(CustomerServiceError):
    def __init__(self, customer_id: int):
        super().__init__(f"Cliente {customer_id} possui pedidos e não pode ser excluído", 409)


class AddressNotFoundError(CustomerServiceError):
    def __init__(self, address_id: int):
        super().__init__(f"Endereço {address_id} não encontrado", 404)


class AddressAccessDeniedError(CustomerServiceError):
    def __init__(self, address_id: int):
        super().__init__(f"Acesso negado ao endereço {address_id}", 403)


class AddressInUseError(CustomerServiceError):
    def __init__(self, address_id: int):
        super().__init__(f"Endereço {address_id} está vinculado a pedidos e não pode ser excluído", 409)


class CustomerService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ----- Identification -----

    async def get_by_cpf(self, cpf: str) -> Optional[Customer]:
        result = await self.session.execute(select(Customer).where(Customer.cpf == clean_cpf(cpf)))
        return result.scalar_one_or_none()

    async def identify(self, cpf: str, birth_date: date) -> Dict[str, Any]:
        """
        Log a customer in by CPF + birth date.

        Returns ``{"customer", "token"}``.

        Raises:
            InvalidCpfError: CPF fails the check digits
            CustomerNotIdentifiedError: no match; the client may offer registration
        """
        if not is_valid_cpf(cpf):
            raise InvalidCpfError()
        customer = await self.get_by_cpf(cpf)
        if customer is None or customer.birth_date != birth_date:
            logger.info("Customer identification failed", cpf=clean_cpf(cpf))
            raise CustomerNotIdentifiedError()
        logger.info("Customer identified", customer_id=customer.id)
        return {
            "customer": self.customer_to_dict(customer),
            "addresses": [self.address_to_dict(a) for a in customer.addresses],
            "token": create_customer_token(customer.id),
        }

    async def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        customer = await self.create_customer(data)
        return {
            "customer": self.customer_to_dict(customer),
            "addresses": [self.address_to_dict(a) for a in customer.addresses],
            "token": create_customer_token(customer.id),
        }

    async def create_customer(self, data: Dict[str, Any]) -> Customer:
        """Create a customer with optional initial addresses; the first one becomes default."""
        if not is_valid_cpf(data["cpf"]):
            raise InvalidCpfError()
        if await self.get_by_cpf(data["cpf"]):
            raise CustomerExistsError()

        customer = Customer(
            cpf=clean_cpf(data["cpf"]),
            **{k: data[k] for k in CUSTOMER_FIELDS},
        )
        addresses = []
        for index, address_data in enumerate(data.get("addresses") or []):
            addresses.append(self._build_address(address_data, is_default=index == 0))
        customer.addresses = addresses
        self.session.add(customer)
        await self.session.flush()
        logger.info("Customer registered", customer_id=customer.id, addresses=len(addresses))
        return customer

    # ----- Profile -----

    async def get_customer(self, customer_id: int) -> Customer:
        customer = await self.session.get(Customer, customer_id)
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def update_customer(self, customer_id: int, data: Dict[str, Any]) -> Customer:
        customer = await self.get_customer(customer_id)
        if data.get("cpf"):
            if not is_valid_cpf(data["cpf"]):
                raise InvalidCpfError()
            other = await self.get_by_cpf(data["cpf"])
            if other and other.id != customer.id:
                raise CustomerExistsError()
            customer.cpf = clean_cpf(data["cpf"])
        for field in CUSTOMER_FIELDS:
            if data.get(field) is not None:
                setattr(customer, field, data[field])
        await self.session.flush()
        return customer

    async def delete_customer(self, customer_id: int) -> None:
        customer = await self.get_customer(customer_id)
        orders = await self._count_orders(customer_id)
        if orders:
            raise CustomerHasOrdersError(customer_id)
        await self.session.delete(customer)
        await self.session.flush()
        logger.info("Customer deleted", customer_id=customer_id)

    async def _count_orders(self, customer_id: int) -> int:
        count = await self.session.scalar(select(func.count(Order.id)).where(Order.customer_id == customer_id))
        return int(count or 0)

    async def search_customers(self, search: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Admin listing; ``search`` matches name, CPF or email."""
        query = select(Customer)
        count_query = select(func.count(Customer.id))
        if search:
            term = f"%{search.strip().lower()}%"
            conditions = [func.lower(Customer.name).like(term), func.lower(Customer.email).like(term)]
            digits = clean_cpf(search)
            if digits:
                conditions.append(Customer.cpf.like(f"%{digits}%"))
            query = query.where(or_(*conditions))
            count_query = count_query.where(or_(*conditions))

        total = int(await self.session.scalar(count_query) or 0)
        result = await self.session.execute(
            query.order_by(Customer.created_at.desc(), Customer.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        customers = result.scalars().all()

        order_counts: Dict[int, int] = {}
        if customers:
            rows = await self.session.execute(
                select(Order.customer_id, func.count(Order.id))
                .where(Order.customer_id.in_([c.id for c in customers]))
                .group_by(Order.customer_id)
            )
            order_counts = {customer_id: count for customer_id, count in rows.all()}

        items = []
        for customer in customers:
            data = self.customer_to_dict(customer)
            data["orders_count"] = order_counts.get(customer.id, 0)
            items.append(data)
        return {
            "customers": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit if limit else 1,
        }

    async def get_customer_details(self, customer_id: int) -> Dict[str, Any]:
        customer = await self.get_customer(customer_id)
        data = self.customer_to_dict(customer)
        data["addresses"] = [self.address_to_dict(a) for a in customer.addresses]
        data["orders_count"] = await self._count_orders(customer_id)
        return data

    # ----- Addresses -----

    def _build_address(self, data: Dict[str, Any], is_default: bool) -> Address:
        if not is_valid_cep(data.get("zip_code")):
            raise InvalidZipCodeError(data.get("zip_code") or "")
        zip_code = clean_cep(data["zip_code"])
        values = {k: data[k] for k in ADDRESS_FIELDS if data.get(k) is not None}
        values["zip_code"] = zip_code
        return Address(is_default=is_default, **values)

    async def list_addresses(self, customer_id: int) -> List[Address]:
        result = await self.session.execute(
            select(Address).where(Address.customer_id == customer_id).order_by(Address.id)
        )
        return list(result.scalars().all())

    async def get_owned_address(self, customer_id: int, address_id: int) -> Address:
        address = await self.session.get(Address, address_id)
        if not address:
            raise AddressNotFoundError(address_id)
        if address.customer_id != customer_id:
            raise AddressAccessDeniedError(address_id)
        return address

    async def _clear_default(self, customer_id: int, keep_id: Optional[int] = None) -> None:
        query = update(Address).where(Address.customer_id == customer_id, Address.is_default == True)
        if keep_id is not None:
            query = query.where(Address.id != keep_id)
        await self.session.execute(query.values(is_default=False))

    async def add_address(self, customer_id: int, data: Dict[str, Any]) -> Address:
        """The first address is always default; ``is_default`` on later ones moves the default."""
        await self.get_customer(customer_id)
        existing = await self.list_addresses(customer_id)
        make_default = not existing or bool(data.get("is_default"))
        if make_default and existing:
            await self._clear_default(customer_id)
        address = self._build_address(data, is_default=make_default)
        address.customer_id = customer_id
        self.session.add(address)
        await self.session.flush()
        logger.info("Address added", customer_id=customer_id, address_id=address.id, is_default=make_default)
        return address

    async def update_address(self, customer_id: int, address_id: int, data: Dict[str, Any]) -> Address:
        address = await self.get_owned_address(customer_id, address_id)
        if data.get("zip_code") is not None:
            if not is_valid_cep(data["zip_code"]):
                raise InvalidZipCodeError(data["zip_code"])
            address.zip_code = clean_cep(data["zip_code"])
        for field in ADDRESS_FIELDS:
            if field != "zip_code" and data.get(field) is not None:
                setattr(address, field, data[field])
        if data.get("is_default"):
            await self._clear_default(customer_id, keep_id=address.id)
            address.is_default = True
        await self.session.flush()
        return address

    async def set_default_address(self, customer_id: int, address_id: int) -> Address:
        address = await self.get_owned_address(customer_id, address_id)
        await self._clear_default(customer_id, keep_id=address.id)
        address.is_default = True
        await self.session.flush()
        return address

    async def delete_address(self, customer_id: int, address_id: int) -> None:
        """Deleting the default promotes the most recent remaining address."""
        address = await self.get_owned_address(customer_id, address_id)
        in_use = await self.session.scalar(
            select(func.count(Order.id)).where(Order.address_id == address_id)
        )
        if in_use:
            raise AddressInUseError(address_id)
        was_default = address.is_default
        await self.session.delete(address)
        await self.session.flush()
        if was_default:
            result = await self.session.execute(
                select(Address)
                .where(Address.customer_id == customer_id)
                .order_by(Address.created_at.desc(), Address.id.desc())
                .limit(1)
            )
            replacement = result.scalar_one_or_none()
            if replacement:
                replacement.is_default = True
                await self.session.flush()
        logger.info("Address deleted", customer_id=customer_id, address_id=address_id)

    # ----- Serialization -----

    @staticmethod
    def customer_to_dict(customer: Customer) -> Dict[str, Any]:
        return {
            "id": customer.id,
            "name": customer.name,
            "cpf": customer.cpf,
            "cpf_formatted": format_cpf(customer.cpf),
            "birth_date": customer.birth_date.isoformat() if customer.birth_date else None,
            "email": customer.email,
            "phone": customer.phone,
            "created_at": customer.created_at.isoformat() if customer.created_at else None,
        }

    @staticmethod
    def address_to_dict(address: Address) -> Dict[str, Any]:
        return {
            "id": address.id,
            "label": address.label,
            "street": address.street,
            "number": address.number,
            "complement": address.complement,
            "neighborhood": address.neighborhood,
            "city": address.city,
            "state": address.state,
            "zip_code": address.zip_code,
            "is_default": bool(address.is_default),
        }


def format_address(address: Address) -> str:
    """Single-line address for reports and messages."""
    parts = [f"{address.street}, {address.number}"]
    if address.complement:
        parts.append(address.complement)
    parts.append(address.neighborhood)
    parts.append(f"{address.city}/{address.state}")
    parts.append(f"CEP {address.zip_code[:5]}-{address.zip_code[5:]}")
    return " - ".join(parts)


def split_name(full_name: str) -> Tuple[str, str]:
    """First name and the rest (gateway payer fields)."""
    parts = (full_name or "").strip().split(" ", 1)
    return parts[0], parts[1] if len(parts) > 1 else ""
