"""Common domain types."""
from datetime import datetime, timezone
from uuid import uuid4


def generate_id() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes coming out of the database as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since epoch, the timestamp format the client expects."""
    return int(ensure_aware(value).timestamp() * 1000)
