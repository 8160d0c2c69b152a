"""Invoice database model."""
from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship

from pulsefeed.domain.common.types import utcnow
from pulsefeed.infra.db.base import Base


class InvoiceModel(Base):
    """Bill sent to a client."""

    __tablename__ = "invoices"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    due_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft, sent, paid, overdue, void
    amount = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("ClientModel")

    __table_args__ = (
        Index("ix_invoices_user_id_due_date", "user_id", "due_date"),
    )
