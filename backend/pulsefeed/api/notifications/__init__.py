"""Notifications API."""
from fastapi import APIRouter

from pulsefeed.api.notifications import routes_notifications

router = APIRouter()

router.include_router(
    routes_notifications.router,
    prefix="/users/{user_id}/notifications",
    tags=["notifications"],
)
