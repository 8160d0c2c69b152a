"""Client database model."""
from sqlalchemy import Column, String, Date

from pulsefeed.infra.db.base import Base


class ClientModel(Base):
    """A client of the business owner (user)."""

    __tablename__ = "clients"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    date_of_birth = Column(Date, nullable=True)
