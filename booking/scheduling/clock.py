from datetime import datetime
from zoneinfo import ZoneInfo

from booking.core import config


def app_timezone() -> ZoneInfo:
    return ZoneInfo(config.APP_TIMEZONE)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware timestamp to naive wall-clock time in the app timezone.

    Naive values are assumed to already be local and pass through unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(app_timezone()).replace(tzinfo=None)


def local_now() -> datetime:
    return datetime.now(app_timezone()).replace(tzinfo=None)
