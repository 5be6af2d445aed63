# backend/app/services/reports.py
"""CSV reports for the back office: kits per event and filtered order lists."""
import csv
import io
from datetime import date
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import ORDER_STATUS_LABELS, STATUS_CANCELLED
from backend.app.core.cpf import format_cpf
from backend.app.core.logging import get_logger
from backend.app.models.customer import Customer
from backend.app.models.event import Event
from backend.app.models.order import Order
from backend.app.services.customers import format_address
from backend.app.services.events import EventService
from backend.app.services.orders import OrderService

logger = get_logger(__name__)

KITS_REPORT_HEADERS = [
    "Nº Pedido",
    "Nome do Atleta",
    "CPF",
    "Camisa",
    "Produto",
    "Cliente Responsável",
    "Endereço de Entrega",
]

ORDERS_REPORT_HEADERS = [
    "Nº Pedido",
    "Data",
    "Evento",
    "Cliente",
    "CPF",
    "Telefone",
    "Kits",
    "Entrega",
    "Kits adicionais",
    "Doação",
    "Desconto",
    "Cupom",
    "Total",
    "Pagamento",
    "Status",
]


def _to_csv(headers: List[str], rows: List[List[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def _money(value) -> str:
    return f"{float(value or 0):.2f}".replace(".", ",")


class ReportService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def events_for_reports(self) -> List[Dict[str, Any]]:
        orders_count = (
            select(func.count(Order.id)).where(Order.event_id == Event.id).correlate(Event).scalar_subquery()
        )
        result = await self.session.execute(
            select(Event, orders_count.label("orders_count")).order_by(Event.date.desc(), Event.id.desc())
        )
        return [
            {
                "id": event.id,
                "name": event.name,
                "date": event.date.isoformat() if event.date else None,
                "city": event.city,
                "available": bool(event.available),
                "orders_count": int(count or 0),
            }
            for event, count in result.all()
        ]

    async def kits_report_rows(self, event_id: int, include_cancelled: bool = False) -> List[List[str]]:
        """One row per athlete kit, ordered by order number."""
        event = await EventService(self.session).get_event(event_id)
        query = select(Order).where(Order.event_id == event_id).order_by(Order.order_number)
        if not include_cancelled:
            query = query.where(Order.status != STATUS_CANCELLED)
        result = await self.session.execute(query)

        product = f"[Retirada do Kit] {event.name}"
        rows = []
        for order in result.scalars().all():
            address = format_address(order.address) if order.address else ""
            for kit in order.kits:
                rows.append([
                    order.order_number,
                    kit.name,
                    format_cpf(kit.cpf),
                    kit.shirt_size,
                    product,
                    order.customer.name if order.customer else "",
                    address,
                ])
        return rows

    async def kits_report_csv(self, event_id: int, include_cancelled: bool = False) -> str:
        rows = await self.kits_report_rows(event_id, include_cancelled)
        logger.info("Kits report generated", event_id=event_id, kits=len(rows))
        return _to_csv(KITS_REPORT_HEADERS, rows)

    async def orders_report_csv(
        self,
        status: Optional[str] = None,
        event_id: Optional[int] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> str:
        conditions = OrderService.filter_conditions(status, event_id, search, date_from, date_to)
        result = await self.session.execute(
            select(Order)
            .join(Customer, Customer.id == Order.customer_id)
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        rows = []
        for order in result.scalars().all():
            rows.append([
                order.order_number,
                order.created_at.strftime("%d/%m/%Y %H:%M") if order.created_at else "",
                order.event.name if order.event else "",
                order.customer.name if order.customer else "",
                format_cpf(order.customer.cpf) if order.customer else "",
                order.customer.phone if order.customer else "",
                order.kit_quantity,
                _money((order.base_cost or 0) + (order.delivery_cost or 0)),
                _money(order.extra_kits_cost),
                _money(order.donation_cost),
                _money(order.discount_amount),
                order.coupon_code or "",
                _money(order.total_cost),
                order.payment_method,
                ORDER_STATUS_LABELS.get(order.status, order.status),
            ])
        logger.info("Orders report generated", orders=len(rows))
        return _to_csv(ORDERS_REPORT_HEADERS, rows)
