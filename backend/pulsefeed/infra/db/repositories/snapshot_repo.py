"""Domain snapshot reader: upcoming sessions and outstanding bills for one user."""
import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsefeed.domain.common.types import ensure_aware
from pulsefeed.domain.notifications.generator import BILL_STATUSES, SESSION_STATUS_SCHEDULED
from pulsefeed.domain.notifications.models import DomainSnapshot, OutstandingBill, ScheduledSession
from pulsefeed.infra.db.models.appointment import AppointmentModel
from pulsefeed.infra.db.models.client import ClientModel
from pulsefeed.infra.db.models.invoice import InvoiceModel

logger = logging.getLogger(__name__)


class SnapshotRepository:
    """Read-only queries against appointments / invoices (joined to clients for names)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upcoming_sessions(self, user_id: str, now: datetime, limit: int = 50) -> List[ScheduledSession]:
        """Scheduled sessions at or after `now`, soonest first."""
        result = await self.session.execute(
            select(
                AppointmentModel.id,
                AppointmentModel.scheduled_at,
                AppointmentModel.status,
                ClientModel.name,
            )
            .outerjoin(ClientModel, ClientModel.id == AppointmentModel.client_id)
            .where(
                AppointmentModel.user_id == user_id,
                AppointmentModel.status == SESSION_STATUS_SCHEDULED,
                AppointmentModel.scheduled_at >= ensure_aware(now).astimezone(timezone.utc),
            )
            .order_by(AppointmentModel.scheduled_at.asc(), AppointmentModel.id)
            .limit(limit)
        )
        return [
            ScheduledSession(
                id=row.id,
                scheduled_at=ensure_aware(row.scheduled_at) if row.scheduled_at else None,
                status=row.status,
                client_name=row.name,
            )
            for row in result.all()
        ]

    async def outstanding_bills(self, user_id: str, limit: int = 50) -> List[OutstandingBill]:
        """Sent or overdue invoices, earliest due first."""
        result = await self.session.execute(
            select(
                InvoiceModel.id,
                InvoiceModel.due_date,
                InvoiceModel.status,
                InvoiceModel.amount,
                ClientModel.name,
            )
            .outerjoin(ClientModel, ClientModel.id == InvoiceModel.client_id)
            .where(
                InvoiceModel.user_id == user_id,
                InvoiceModel.status.in_(BILL_STATUSES),
            )
            .order_by(InvoiceModel.due_date.asc(), InvoiceModel.id)
            .limit(limit)
        )
        return [
            OutstandingBill(
                id=row.id,
                due_date=row.due_date,
                status=row.status,
                amount=row.amount,
                client_name=row.name,
            )
            for row in result.all()
        ]


class DomainSnapshotReader:
    """Opens its own session per snapshot so it can run alongside the notification gateway."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, source_limit: int = 50):
        self.session_factory = session_factory
        self.source_limit = source_limit

    async def fetch_snapshot(self, user_id: str, now: datetime) -> DomainSnapshot:
        async with self.session_factory() as session:
            repo = SnapshotRepository(session)
            sessions = await repo.upcoming_sessions(user_id, now, limit=self.source_limit)
            bills = await repo.outstanding_bills(user_id, limit=self.source_limit)
        logger.debug(
            "[NOTIFICATIONS] Snapshot for user %s: %d sessions, %d bills", user_id, len(sessions), len(bills)
        )
        return DomainSnapshot(sessions=tuple(sessions), bills=tuple(bills))
