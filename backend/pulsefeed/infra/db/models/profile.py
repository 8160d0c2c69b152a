"""Profile database model."""
from sqlalchemy import Column, String, Boolean, DateTime

from pulsefeed.domain.common.types import utcnow
from pulsefeed.infra.db.base import Base


class ProfileModel(Base):
    """Account profile of a user; id is the user id."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    subscription_status = Column(String, nullable=True)  # trialing, active, canceled, ...
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    stripe_account_id = Column(String, nullable=True)
    is_early_adopter = Column(Boolean, default=False, nullable=False)
