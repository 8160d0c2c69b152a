"""Profile and client queries used by the daily notification jobs."""
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulsefeed.infra.db.models.client import ClientModel
from pulsefeed.infra.db.models.profile import ProfileModel

SUBSCRIPTION_TRIALING = "trialing"


class ProfileRepository:
    """Profile repository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_trialing(self) -> List[ProfileModel]:
        """Profiles currently in their free trial."""
        result = await self.session.execute(
            select(ProfileModel)
            .where(ProfileModel.subscription_status == SUBSCRIPTION_TRIALING)
            .order_by(ProfileModel.id)
        )
        return list(result.scalars().all())

    async def count_early_adopters(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ProfileModel).where(ProfileModel.is_early_adopter.is_(True))
        )
        return result.scalar() or 0

    async def count_clients(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ClientModel).where(ClientModel.user_id == user_id)
        )
        return result.scalar() or 0

    async def list_clients_with_birthday(self) -> List[ClientModel]:
        """Every client with a known date of birth, grouped by owner."""
        result = await self.session.execute(
            select(ClientModel)
            .where(ClientModel.date_of_birth.is_not(None))
            .order_by(ClientModel.user_id, ClientModel.name)
        )
        return list(result.scalars().all())
