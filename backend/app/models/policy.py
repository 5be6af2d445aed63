from sqlalchemy import String, ForeignKey, DateTime, Boolean, Index, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from backend.app.core.base import Base, TimestampMixin


class PolicyDocument(TimestampMixin, Base):
    """Terms shown at registration or checkout. One active document per type."""
    __tablename__ = 'policy_documents'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # register | order
    type: Mapped[str] = mapped_column(String(20))
    title: Mapped[str] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index('ix_policy_documents_type_active', 'type', 'active'),
    )


class PolicyAcceptance(Base):
    __tablename__ = 'policy_acceptances'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id', ondelete='CASCADE'))
    policy_id: Mapped[int] = mapped_column(ForeignKey('policy_documents.id', ondelete='CASCADE'))
    context: Mapped[str] = mapped_column(String(20))
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey('orders.id', ondelete='SET NULL'), nullable=True)
    accepted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_policy_acceptances_customer_id', 'customer_id'),
    )
