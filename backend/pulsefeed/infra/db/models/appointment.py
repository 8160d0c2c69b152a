"""Appointment database model."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from pulsefeed.infra.db.base import Base


class AppointmentModel(Base):
    """Scheduled session with a client."""

    __tablename__ = "appointments"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="scheduled")  # scheduled, completed, cancelled, no_show

    client = relationship("ClientModel")

    __table_args__ = (
        Index("ix_appointments_user_id_scheduled_at", "user_id", "scheduled_at"),
    )
