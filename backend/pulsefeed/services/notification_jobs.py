"""
Daily jobs that create durable notifications.

Meant to be run once a day (cron, scheduler, or by hand):

    python -m pulsefeed.services.notification_jobs engagement
    python -m pulsefeed.services.notification_jobs trials
    python -m pulsefeed.services.notification_jobs birthdays
    python -m pulsefeed.services.notification_jobs all

Each job returns {"checked": <profiles or clients looked at>, "notified": <rows created>}
and skips notifications that already exist, so running it twice is harmless.
"""
import asyncio
import logging
import sys
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsefeed.domain.common.types import utcnow
from pulsefeed.domain.notifications.models import NotificationCategory
from pulsefeed.domain.notifications.scheduled import (
    TRIAL_EXPIRED_TITLE,
    TRIAL_EXPIRING_TITLE,
    BirthdayClient,
    PlannedNotification,
    days_since,
    plan_birthday_notification,
    plan_engagement_notification,
    plan_trial_notification,
    upcoming_birthdays,
)
from pulsefeed.infra.db.repositories.notification_repo import NotificationRepository
from pulsefeed.infra.db.repositories.profile_repo import ProfileRepository

logger = logging.getLogger(__name__)


async def _insert(repo: NotificationRepository, user_id: str, planned: PlannedNotification, now: datetime) -> None:
    await repo.create(
        user_id,
        planned.category.value,
        planned.title,
        planned.message,
        related_id=planned.related_id,
        related_type=planned.related_type,
        created_at=now,
    )


async def check_engagement_notifications(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
) -> dict:
    """Onboarding / upgrade nudges on days 1, 3, 7, 20 and 25 of a trial."""
    now = now or utcnow()
    notified = 0
    try:
        async with session_factory() as session:
            profiles = ProfileRepository(session)
            notifications = NotificationRepository(session)
            trialing = await profiles.list_trialing()
            for profile in trialing:
                if profile.created_at is None:
                    continue
                day = days_since(profile.created_at, now)
                has_clients = day == 3 and await profiles.count_clients(profile.id) > 0
                planned = plan_engagement_notification(
                    day,
                    has_clients=has_clients,
                    stripe_connected=bool(profile.stripe_account_id),
                )
                if planned is None:
                    continue
                if await notifications.exists(profile.id, planned.category.value, title=planned.title):
                    continue
                await _insert(notifications, profile.id, planned, now)
                notified += 1
    except SQLAlchemyError:
        logger.exception("[JOBS] Engagement notification check failed")
        raise

    logger.info("[JOBS] Engagement: checked %d trialing profiles, notified %d", len(trialing), notified)
    return {"checked": len(trialing), "notified": notified}


async def check_expiring_trials(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
) -> dict:
    """Trial-expired and one-week-left notices with the current pricing offer."""
    now = now or utcnow()
    notified = 0
    checked = 0
    try:
        async with session_factory() as session:
            profiles = ProfileRepository(session)
            notifications = NotificationRepository(session)
            trialing = [p for p in await profiles.list_trialing() if p.trial_ends_at is not None]
            checked = len(trialing)
            early_adopter_count: Optional[int] = None
            for profile in trialing:
                planned = plan_trial_notification(profile.id, profile.trial_ends_at, now)
                if planned is None:
                    continue
                pattern = "%trial expired%" if planned.title == TRIAL_EXPIRED_TITLE else "%trial expiring%"
                if await notifications.exists(
                    profile.id,
                    NotificationCategory.SYSTEM_UPDATE.value,
                    title_like=pattern,
                    related_type="subscription",
                ):
                    continue
                if early_adopter_count is None:
                    early_adopter_count = await profiles.count_early_adopters()
                planned = plan_trial_notification(
                    profile.id,
                    profile.trial_ends_at,
                    now,
                    is_early_adopter=bool(profile.is_early_adopter),
                    early_adopter_count=early_adopter_count,
                )
                await _insert(notifications, profile.id, planned, now)
                notified += 1
    except SQLAlchemyError:
        logger.exception("[JOBS] Trial expiry check failed")
        raise

    logger.info(
        "[JOBS] Trials: checked %d profiles, notified %d (%s / %s)",
        checked, notified, TRIAL_EXPIRED_TITLE, TRIAL_EXPIRING_TITLE,
    )
    return {"checked": checked, "notified": notified}


async def check_client_birthdays(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
    tz: str = "UTC",
) -> dict:
    """A client_birthday notification for every client whose birthday is today (once per day)."""
    now = now or utcnow()
    zone = ZoneInfo(tz)
    today = now.astimezone(zone).date()
    start_of_day = datetime.combine(today, time.min, tzinfo=zone).astimezone(timezone.utc)
    notified = 0
    try:
        async with session_factory() as session:
            notifications = NotificationRepository(session)
            clients = await ProfileRepository(session).list_clients_with_birthday()
            candidates = [
                (c.user_id, BirthdayClient(id=c.id, name=c.name, date_of_birth=c.date_of_birth))
                for c in clients
            ]
            owners = {client.id: user_id for user_id, client in candidates}
            for birthday in upcoming_birthdays([client for _, client in candidates], today, days=0):
                planned = plan_birthday_notification(birthday)
                if planned is None:
                    continue
                user_id = owners[birthday.client.id]
                if await notifications.exists(
                    user_id,
                    planned.category.value,
                    related_id=planned.related_id,
                    since=start_of_day,
                ):
                    continue
                await _insert(notifications, user_id, planned, now)
                notified += 1
    except SQLAlchemyError:
        logger.exception("[JOBS] Client birthday check failed")
        raise

    logger.info("[JOBS] Birthdays: checked %d clients, notified %d", len(clients), notified)
    return {"checked": len(clients), "notified": notified}


JOBS = {
    "engagement": check_engagement_notifications,
    "trials": check_expiring_trials,
    "birthdays": check_client_birthdays,
}


async def run_job(
    name: str,
    session_factory: async_sessionmaker[AsyncSession],
    settings,
    now: Optional[datetime] = None,
) -> dict:
    """Run one job (or "all") at `now` and return its counts, keyed by job name."""
    now = now or utcnow()
    names = list(JOBS) if name == "all" else [name]
    results = {}
    for job_name in names:
        job = JOBS[job_name]
        if job is check_client_birthdays:
            results[job_name] = await job(session_factory, now=now, tz=settings.app_timezone)
        else:
            results[job_name] = await job(session_factory, now=now)
    return results


async def _main(name: str) -> dict:
    from pulsefeed.infra.db.session import dispose_engine, get_session_factory
    from pulsefeed.settings import settings

    try:
        return await run_job(name, get_session_factory(), settings)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    job_name = sys.argv[1] if len(sys.argv) > 1 else "all"
    if job_name != "all" and job_name not in JOBS:
        print(f"Unknown job {job_name!r}; choose one of: {', '.join(JOBS)}, all")
        sys.exit(2)
    for key, counts in asyncio.run(_main(job_name)).items():
        print(f"  {key}: checked={counts['checked']} notified={counts['notified']}")
