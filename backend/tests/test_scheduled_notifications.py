"""Tests for the engagement, trial and birthday planners."""
from datetime import date, timedelta

import pytest

from conftest import NOW

from pulsefeed.domain.notifications.models import NotificationCategory
from pulsefeed.domain.notifications.scheduled import (
    TRIAL_EXPIRED_TITLE,
    TRIAL_EXPIRING_TITLE,
    BirthdayClient,
    days_since,
    next_birthday,
    plan_birthday_notification,
    plan_engagement_notification,
    plan_trial_notification,
    pricing_message,
    upcoming_birthdays,
)


@pytest.mark.parametrize("day", [1, 3, 7, 20, 25])
def test_engagement_days_produce_a_nudge(day):
    planned = plan_engagement_notification(day, has_clients=False, stripe_connected=False)
    assert planned is not None
    assert planned.category == NotificationCategory.SYSTEM_UPDATE


@pytest.mark.parametrize("day", [0, 2, 4, 19, 26, 40])
def test_other_days_are_quiet(day):
    assert plan_engagement_notification(day, has_clients=False, stripe_connected=False) is None


def test_engagement_skips_steps_already_done():
    assert plan_engagement_notification(3, has_clients=True, stripe_connected=False) is None
    assert plan_engagement_notification(7, has_clients=False, stripe_connected=True) is None
    assert plan_engagement_notification(1, has_clients=True, stripe_connected=True) is not None


def test_engagement_related_types():
    assert plan_engagement_notification(1, has_clients=False, stripe_connected=False).related_type == "onboarding"
    assert plan_engagement_notification(20, has_clients=False, stripe_connected=False).related_type == "subscription"


def test_days_since_floors():
    assert days_since(NOW - timedelta(days=1, hours=23), NOW) == 1
    assert days_since(NOW - timedelta(hours=23), NOW) == 0
    assert days_since(NOW.replace(tzinfo=None) - timedelta(days=3), NOW) == 3


def test_pricing_message():
    assert pricing_message(True, 500) == "$19/month (Early Adopter)"
    assert pricing_message(False, 40) == "$19/month (Early Adopter - 60 spots left) or $29/month"
    assert pricing_message(False, 100) == "$29/month"


def test_expired_trial():
    planned = plan_trial_notification("p1", NOW - timedelta(hours=1), NOW)
    assert planned.title == TRIAL_EXPIRED_TITLE
    assert planned.related_type == "subscription"
    assert planned.related_id == "p1"
    assert "$29/month" in planned.message


@pytest.mark.parametrize("left", [timedelta(days=7), timedelta(days=6, hours=1)])
def test_trial_warning_one_week_before(left):
    planned = plan_trial_notification("p1", NOW + left, NOW, early_adopter_count=99)
    assert planned.title == TRIAL_EXPIRING_TITLE
    assert "1 spots left" in planned.message


@pytest.mark.parametrize("left", [timedelta(days=7, seconds=1), timedelta(days=3), timedelta(days=20)])
def test_no_trial_notice_otherwise(left):
    assert plan_trial_notification("p1", NOW + left, NOW) is None


def test_next_birthday_this_year_or_next():
    today = date(2026, 3, 10)
    assert next_birthday(date(1990, 3, 10), today) == date(2026, 3, 10)
    assert next_birthday(date(1990, 3, 12), today) == date(2026, 3, 12)
    assert next_birthday(date(1990, 1, 5), today) == date(2027, 1, 5)


def test_leap_day_birthday_in_common_year():
    assert next_birthday(date(2000, 2, 29), date(2026, 2, 1)) == date(2026, 2, 28)
    assert next_birthday(date(2000, 2, 29), date(2028, 2, 1)) == date(2028, 2, 29)


def test_upcoming_birthdays_window_and_order():
    today = date(2026, 12, 28)
    clients = [
        BirthdayClient("c1", "Zoe", date(1985, 1, 2)),
        BirthdayClient("c2", "Adam", date(1991, 12, 28)),
        BirthdayClient("c3", "Bea", date(1979, 1, 2)),
        BirthdayClient("c4", "Cal", date(1979, 2, 20)),
        BirthdayClient("c5", "Dee", None),
    ]

    upcoming = upcoming_birthdays(clients, today, days=7)

    assert [(b.client.id, b.days_until) for b in upcoming] == [("c2", 0), ("c3", 5), ("c1", 5)]
    assert upcoming[1].birthday == date(2027, 1, 2)


def test_birthday_notification_only_on_the_day():
    client = BirthdayClient("c1", "Sam", date(1990, 3, 10))
    today, soon = upcoming_birthdays([client], date(2026, 3, 10)), upcoming_birthdays([client], date(2026, 3, 8))

    planned = plan_birthday_notification(today[0])
    assert planned.category == NotificationCategory.CLIENT_BIRTHDAY
    assert planned.related_type == "client"
    assert planned.related_id == "c1"
    assert "Sam" in planned.message
    assert plan_birthday_notification(soon[0]) is None
