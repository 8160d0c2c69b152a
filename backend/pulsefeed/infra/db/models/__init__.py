"""Database models."""
from pulsefeed.infra.db.models.client import ClientModel
from pulsefeed.infra.db.models.appointment import AppointmentModel
from pulsefeed.infra.db.models.invoice import InvoiceModel
from pulsefeed.infra.db.models.profile import ProfileModel
from pulsefeed.infra.db.models.notification import NotificationModel

__all__ = [
    "ClientModel",
    "AppointmentModel",
    "InvoiceModel",
    "ProfileModel",
    "NotificationModel",
]
