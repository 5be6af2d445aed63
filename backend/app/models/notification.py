"""Outbound notification records: email log, WhatsApp templates and messages."""
from sqlalchemy import String, ForeignKey, DateTime, Boolean, Index, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base, TimestampMixin
from backend.app.core.constants import WHATSAPP_PENDING


class EmailLog(Base):
    __tablename__ = 'email_logs'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email_type: Mapped[str] = mapped_column(String(50))
    recipient: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str] = mapped_column(String(255))
    # sent | failed
    status: Mapped[str] = mapped_column(String(20))
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey('customers.id', ondelete='SET NULL'), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_email_logs_status', 'status'),
        Index('ix_email_logs_email_type', 'email_type'),
        Index('ix_email_logs_created_at', 'created_at'),
    )


class WhatsappTemplate(TimestampMixin, Base):
    __tablename__ = 'whatsapp_templates'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class WhatsappMessage(Base):
    __tablename__ = 'whatsapp_messages'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    phone: Mapped[str] = mapped_column(String(20))
    content: Mapped[str] = mapped_column(Text)
    # pending | sent | error
    status: Mapped[str] = mapped_column(String(20), default=WHATSAPP_PENDING)
    job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_whatsapp_messages_order_id', 'order_id'),
    )
