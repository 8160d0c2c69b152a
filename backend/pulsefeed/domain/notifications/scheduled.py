"""Planners for durable notifications created by the daily jobs.

Pure functions: they decide *whether* and *what* to notify. The jobs in
`pulsefeed.services.notification_jobs` read the store, call these and insert rows.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional

from pulsefeed.domain.common.types import ensure_aware
from pulsefeed.domain.notifications.models import NotificationCategory

PRODUCT_NAME = "PulseFeed"

EARLY_ADOPTER_PRICE = "$19/month"
STANDARD_PRICE = "$29/month"
EARLY_ADOPTER_SPOTS = 100

TRIAL_EXPIRED_TITLE = "Trial Expired"
TRIAL_EXPIRING_TITLE = "Trial Expiring Soon"
TRIAL_WARNING_DAYS = 7

BIRTHDAY_TITLE = "Client Birthday"


@dataclass(frozen=True)
class PlannedNotification:
    """A durable notification a job should insert (unless an equal one exists)."""
    category: NotificationCategory
    title: str
    message: str
    related_type: Optional[str] = None
    related_id: Optional[str] = None


@dataclass(frozen=True)
class EngagementStep:
    day: int
    title: str
    message: str
    related_type: str = "engagement"


ENGAGEMENT_SCHEDULE = (
    EngagementStep(
        day=1,
        title=f"Welcome to {PRODUCT_NAME}! 🎉",
        message=(
            "Get started by adding your first client and connecting your Stripe account. "
            "You have 30 days free to explore all features!"
        ),
        related_type="onboarding",
    ),
    EngagementStep(
        day=3,
        title="Have you added your first client yet?",
        message="Adding clients is easy! Click here to get started and begin managing your business.",
        related_type="onboarding",
    ),
    EngagementStep(
        day=7,
        title="Connect Stripe to start accepting payments",
        message=(
            "Link your Stripe account to accept payments from clients and issue invoices "
            "with automatic tax calculation."
        ),
        related_type="onboarding",
    ),
    EngagementStep(
        day=20,
        title="Your trial ends in 10 days",
        message=(
            f"Upgrade now to lock in Early Adopter pricing at {EARLY_ADOPTER_PRICE} forever! "
            "Only a few spots remaining."
        ),
        related_type="subscription",
    ),
    EngagementStep(
        day=25,
        title="Last chance: Lock in Early Adopter pricing",
        message=(
            f"Your trial ends in 5 days. Upgrade now to secure {EARLY_ADOPTER_PRICE} forever "
            f"before the price increases to {STANDARD_PRICE}."
        ),
        related_type="subscription",
    ),
)

_STEPS_BY_DAY = {step.day: step for step in ENGAGEMENT_SCHEDULE}


def days_since(start: datetime, now: datetime) -> int:
    """Whole days elapsed (floor)."""
    return math.floor((ensure_aware(now) - ensure_aware(start)).total_seconds() / 86400)


def plan_engagement_notification(
    days_since_signup: int,
    *,
    has_clients: bool,
    stripe_connected: bool,
) -> Optional[PlannedNotification]:
    """Nudge for a trialing user on a scheduled day, or None.

    Day 3 is skipped once the user has a client; day 7 once payments are connected.
    """
    step = _STEPS_BY_DAY.get(days_since_signup)
    if step is None:
        return None
    if step.day == 3 and has_clients:
        return None
    if step.day == 7 and stripe_connected:
        return None
    return PlannedNotification(
        category=NotificationCategory.SYSTEM_UPDATE,
        title=step.title,
        message=step.message,
        related_type=step.related_type,
    )


def pricing_message(is_early_adopter: bool, early_adopter_count: int) -> str:
    if is_early_adopter:
        return f"{EARLY_ADOPTER_PRICE} (Early Adopter)"
    if early_adopter_count < EARLY_ADOPTER_SPOTS:
        spots = EARLY_ADOPTER_SPOTS - early_adopter_count
        return f"{EARLY_ADOPTER_PRICE} (Early Adopter - {spots} spots left) or {STANDARD_PRICE}"
    return STANDARD_PRICE


def plan_trial_notification(
    profile_id: str,
    trial_ends_at: datetime,
    now: datetime,
    *,
    is_early_adopter: bool = False,
    early_adopter_count: int = 0,
) -> Optional[PlannedNotification]:
    """Trial-expired notice once the trial is over, a warning when exactly a week is left."""
    trial_ends_at = ensure_aware(trial_ends_at)
    now = ensure_aware(now)
    pricing = pricing_message(is_early_adopter, early_adopter_count)

    if trial_ends_at < now:
        return PlannedNotification(
            category=NotificationCategory.SYSTEM_UPDATE,
            title=TRIAL_EXPIRED_TITLE,
            message=f"Your free trial has ended. Upgrade to continue using {PRODUCT_NAME}. {pricing}.",
            related_type="subscription",
            related_id=profile_id,
        )

    days_left = math.ceil((trial_ends_at - now).total_seconds() / 86400)
    if days_left == TRIAL_WARNING_DAYS:
        return PlannedNotification(
            category=NotificationCategory.SYSTEM_UPDATE,
            title=TRIAL_EXPIRING_TITLE,
            message=(
                f"Your free trial ends in {TRIAL_WARNING_DAYS} days. "
                f"Upgrade now to continue using {PRODUCT_NAME}. {pricing}."
            ),
            related_type="subscription",
            related_id=profile_id,
        )
    return None


@dataclass(frozen=True)
class BirthdayClient:
    id: str
    name: str
    date_of_birth: Optional[date]


@dataclass(frozen=True)
class UpcomingBirthday:
    client: BirthdayClient
    birthday: date
    days_until: int


def next_birthday(date_of_birth: date, today: date) -> date:
    """Next occurrence of the birthday on or after `today` (Feb 29 falls back to Feb 28)."""
    for year in (today.year, today.year + 1):
        try:
            candidate = date_of_birth.replace(year=year)
        except ValueError:
            candidate = date(year, 2, 28)
        if candidate >= today:
            return candidate
    # Unreachable: next year's date is always >= today
    raise ValueError(f"no birthday found after {today}")


def upcoming_birthdays(clients: Iterable[BirthdayClient], today: date, days: int = 7) -> List[UpcomingBirthday]:
    """Clients whose next birthday falls within `days` of `today`, soonest first."""
    upcoming = []
    for client in clients:
        if client.date_of_birth is None:
            continue
        birthday = next_birthday(client.date_of_birth, today)
        days_until = (birthday - today).days
        if days_until <= days:
            upcoming.append(UpcomingBirthday(client=client, birthday=birthday, days_until=days_until))
    upcoming.sort(key=lambda b: (b.days_until, b.client.name))
    return upcoming


def plan_birthday_notification(birthday: UpcomingBirthday) -> Optional[PlannedNotification]:
    """Birthday notice for a client whose birthday is today."""
    if birthday.days_until != 0:
        return None
    return PlannedNotification(
        category=NotificationCategory.CLIENT_BIRTHDAY,
        title=BIRTHDAY_TITLE,
        message=f"{birthday.client.name} has a birthday today. Send them a note!",
        related_type="client",
        related_id=birthday.client.id,
    )
