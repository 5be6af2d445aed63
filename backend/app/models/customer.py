from sqlalchemy import String, DateTime, Date, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, date
from typing import Optional
from backend.app.core.base import Base


class Customer(Base):
    """Customer identified by CPF + birth date (no password)."""
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    # Digits only
    cpf: Mapped[str] = mapped_column(String(11), unique=True)
    birth_date: Mapped[date] = mapped_column(Date)
    email: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    addresses: Mapped[list["Address"]] = relationship(
        "Address", back_populates="customer", lazy="selectin",
        cascade="all, delete-orphan", order_by="Address.id",
    )

    __table_args__ = (
        Index('ix_customers_email', 'email'),
    )


class Address(Base):
    __tablename__ = 'addresses'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'))
    label: Mapped[str] = mapped_column(String(60), default='Casa')
    street: Mapped[str] = mapped_column(String(255))
    number: Mapped[str] = mapped_column(String(20))
    complement: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    neighborhood: Mapped[str] = mapped_column(String(120))
    city: Mapped[str] = mapped_column(String(120))
    state: Mapped[str] = mapped_column(String(2), default='PB')
    zip_code: Mapped[str] = mapped_column(String(8))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    customer: Mapped["Customer"] = relationship("Customer", back_populates="addresses")

    __table_args__ = (
        Index('ix_addresses_customer_id', 'customer_id'),
        Index('ix_addresses_customer_default', 'customer_id', 'is_default'),
    )
