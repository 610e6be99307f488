from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from app.core.config import settings

logger = structlog.get_logger(__name__)

# Returns the authoritative current instant as an aware UTC datetime.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def provider_local_now(clock: Clock, timezone_name: Optional[str]) -> datetime:
    """Current wall-clock time at the provider, timezone-naive.

    Appointment starts are stored naive in the provider's local clock, so the
    "is it in the future" comparison has to happen in that same frame.
    """
    name = timezone_name or settings.DEFAULT_PROVIDER_TIMEZONE
    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown provider timezone, using UTC", timezone=name)
        zone = ZoneInfo("UTC")
    return clock().astimezone(zone).replace(tzinfo=None)
