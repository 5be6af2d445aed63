from sqlalchemy import String, ForeignKey, Integer, DECIMAL, Boolean, Index, JSON, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
from typing import Optional, List, Dict
from backend.app.core.base import Base, TimestampMixin


class CepZone(TimestampMixin, Base):
    __tablename__ = 'cep_zones'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{"start": "58083000", "end": "58083500"}, ...]
    cep_ranges: Mapped[List[Dict[str, str]]] = mapped_column(JSON(), default=list)
    price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Lower priority number = checked first (for overlapping zones)
    priority: Mapped[int] = mapped_column(Integer, default=1)

    __table_args__ = (
        Index('ix_cep_zones_active_priority', 'active', 'priority'),
    )


class EventCepZonePrice(Base):
    """Per-event override of a zone's delivery price."""
    __tablename__ = 'event_cep_zone_prices'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(ForeignKey('events.id', ondelete='CASCADE'))
    cep_zone_id: Mapped[int] = mapped_column(ForeignKey('cep_zones.id', ondelete='CASCADE'))
    price: Mapped[Decimal] = mapped_column(DECIMAL(10, 2))

    __table_args__ = (
        UniqueConstraint('event_id', 'cep_zone_id', name='uq_event_cep_zone_prices_event_zone'),
        Index('ix_event_cep_zone_prices_event_id', 'event_id'),
    )
