from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Text, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.app.core.base import Base
from backend.app.core.constants import STATUS_AWAITING_PAYMENT
from backend.app.models.event import Event
from backend.app.models.customer import Customer, Address


class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # KR{year}{6 digits}
    order_number: Mapped[str] = mapped_column(String(20), unique=True)
    event_id: Mapped[int] = mapped_column(ForeignKey('events.id'))
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'))
    address_id: Mapped[int] = mapped_column(ForeignKey('addresses.id'))
    kit_quantity: Mapped[int] = mapped_column(Integer)
    # Fixed-price events charge base_cost and no delivery_cost
    base_cost: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=0)
    delivery_cost: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=0)
    extra_kits_cost: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=0)
    donation_cost: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=0)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    # credit | debit | pix
    payment_method: Mapped[str] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(30), default=STATUS_AWAITING_PAYMENT)
    # Client-generated token; a repeated submission resolves to the same order
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    # Mercado Pago payment
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cep_zone_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('cep_zones.id', ondelete='SET NULL'), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    event: Mapped[Event] = relationship(Event, lazy="selectin")
    customer: Mapped[Customer] = relationship(Customer, lazy="selectin")
    address: Mapped[Address] = relationship(Address, lazy="selectin")
    kits: Mapped[list["Kit"]] = relationship(
        "Kit", back_populates="order", lazy="selectin",
        cascade="all, delete-orphan", order_by="Kit.id",
    )

    __table_args__ = (
        Index('ix_orders_event_id', 'event_id'),
        Index('ix_orders_customer_id', 'customer_id'),
        Index('ix_orders_status', 'status'),
        Index('ix_orders_created_at', 'created_at'),
        Index('ix_orders_status_created', 'status', 'created_at'),  # Payment timeout sweep
        Index('ix_orders_payment_id', 'payment_id'),
    )


class Kit(Base):
    """One athlete's kit within an order."""
    __tablename__ = 'kits'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    name: Mapped[str] = mapped_column(String(255))
    cpf: Mapped[str] = mapped_column(String(11))
    shirt_size: Mapped[str] = mapped_column(String(10))

    order: Mapped["Order"] = relationship("Order", back_populates="kits")

    __table_args__ = (Index('ix_kits_order_id', 'order_id'),)


class OrderStatusHistory(Base):
    __tablename__ = 'order_status_history'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    previous_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30))
    # system | admin | mercadopago | customer
    changed_by: Mapped[str] = mapped_column(String(20))
    changed_by_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bulk_operation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_order_status_history_order_id', 'order_id'),
        Index('ix_order_status_history_bulk', 'bulk_operation_id'),
    )
