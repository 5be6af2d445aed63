from sqlalchemy import String, DateTime, DECIMAL, Boolean, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.app.core.base import Base
from backend.app.core.constants import DEFAULT_EXTRA_KIT_PRICE, DEFAULT_PICKUP_ZIP_CODE, PRICING_DISTANCE


class Event(Base):
    """Race event whose kits are picked up and delivered."""
    __tablename__ = 'events'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    date: Mapped[datetime] = mapped_column(DateTime)
    location: Mapped[str] = mapped_column(String(255))
    city: Mapped[str] = mapped_column(String(120))
    state: Mapped[str] = mapped_column(String(2))
    # Kit pickup point, origin for distance pricing
    pickup_zip_code: Mapped[str] = mapped_column(String(8), default=DEFAULT_PICKUP_ZIP_CODE)
    # fixed | cep_zones | distance
    pricing_type: Mapped[str] = mapped_column(String(20), default=PRICING_DISTANCE)
    fixed_price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    extra_kit_price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=DEFAULT_EXTRA_KIT_PRICE)
    donation_required: Mapped[bool] = mapped_column(Boolean, default=False)
    donation_amount: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    donation_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    available: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_events_available', 'available'),
        Index('ix_events_date', 'date'),
    )
