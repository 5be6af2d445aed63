from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Integer, Boolean, Index, JSON, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.core.base import Base, TimestampMixin


class Coupon(TimestampMixin, Base):
    __tablename__ = 'coupons'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # Stored upper-case; lookups are case-insensitive
    code: Mapped[str] = mapped_column(String(50), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # fixed | percentage
    discount_type: Mapped[str] = mapped_column(String(20))
    discount_value: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    max_discount: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    valid_from: Mapped[datetime] = mapped_column(DateTime)
    valid_until: Mapped[datetime] = mapped_column(DateTime)
    # None = unlimited
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    per_customer_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Empty list = every event / every zone
    event_ids: Mapped[List[int]] = mapped_column(JSON(), default=list)
    cep_zone_ids: Mapped[List[int]] = mapped_column(JSON(), default=list)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index('ix_coupons_active', 'active'),
    )


class CouponUsage(Base):
    """One redemption, written when the order is confirmed."""
    __tablename__ = 'coupon_usages'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey('coupons.id', ondelete='CASCADE'))
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'))
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id', ondelete='CASCADE'))
    discount_amount: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_usages_coupon_order'),
        Index('ix_coupon_usages_coupon_customer', 'coupon_id', 'customer_id'),
    )
