"""
Availability resolution: which window, if any, a provider works on a date.

Both schedule representations are resolved here and nowhere else, so the slot
generator and the booking validator only ever see an OpenWindow or a
ClosedDay.
"""

from datetime import date as date_type
from typing import List, Optional, Union
import logging

from app.models.provider import Provider
from app.models.working_hours import WeekDay
from app.schemas.scheduling import (
    ClosedDay,
    ClosedReason,
    DayAvailabilityEntry,
    LegacySchedule,
    OpenWindow,
    ProviderSchedule,
    WeeklySchedule,
)
from app.core.config import settings


logger = logging.getLogger(__name__)


def parse_local_date(value: Union[str, date_type]) -> date_type:
    """Parse a calendar date without passing through a UTC instant.

    "2024-06-03" is June 3rd in every timezone; going through a datetime at
    midnight UTC would shift it a day for providers west of Greenwich.
    """
    if isinstance(value, date_type):
        return value
    return date_type.fromisoformat(value.strip()[:10])


def weekday_of(day: date_type) -> WeekDay:
    return WeekDay(day.weekday())


def resolve_open_window(
    schedule: ProviderSchedule, day: date_type
) -> Union[OpenWindow, ClosedDay]:
    """Return the provider's working window on ``day`` or the reason it is closed."""
    weekday = weekday_of(day)
    availability = schedule.availability

    if isinstance(availability, WeeklySchedule):
        entry = availability.days.get(weekday)
        if entry is None:
            return ClosedDay(reason=ClosedReason.NOT_CONFIGURED)
        if not entry.enabled:
            return ClosedDay(reason=ClosedReason.DISABLED)
        return OpenWindow(open_time=entry.open_time, close_time=entry.close_time)

    # Legacy flat window
    if availability.open_time is None or availability.close_time is None:
        return ClosedDay(reason=ClosedReason.NOT_CONFIGURED)
    if availability.open_time >= availability.close_time:
        logger.warning(
            f"Provider {schedule.provider_id} has an inverted legacy window "
            f"{availability.open_time}-{availability.close_time}"
        )
        return ClosedDay(reason=ClosedReason.NOT_CONFIGURED)

    # An empty enabled-day list means every day is open
    if availability.available_days and weekday not in availability.available_days:
        return ClosedDay(reason=ClosedReason.DISABLED)

    return OpenWindow(open_time=availability.open_time, close_time=availability.close_time)


def _legacy_days(names: Optional[List[str]], provider_id: int) -> List[WeekDay]:
    days = []
    for name in names or []:
        try:
            days.append(WeekDay.from_name(name))
        except KeyError:
            logger.warning(f"Provider {provider_id} has unknown legacy weekday '{name}'")
    return days


def build_provider_schedule(provider: Provider) -> ProviderSchedule:
    """Normalize a provider row into a ProviderSchedule.

    Per-weekday rows win over the legacy flat window as soon as one exists.
    """
    if provider.working_hours:
        days = {}
        for row in provider.working_hours:
            days[WeekDay.from_name(row.weekday)] = DayAvailabilityEntry(
                enabled=row.is_enabled,
                open_time=row.start_time,
                close_time=row.end_time,
            )
        availability = WeeklySchedule(days=days)
    else:
        availability = LegacySchedule(
            open_time=provider.legacy_open_time,
            close_time=provider.legacy_close_time,
            available_days=_legacy_days(provider.legacy_available_days, provider.id),
        )

    return ProviderSchedule(
        provider_id=provider.id,
        timezone=provider.timezone or settings.DEFAULT_PROVIDER_TIMEZONE,
        slot_duration_minutes=provider.slot_duration_minutes or settings.DEFAULT_SLOT_MINUTES,
        availability=availability,
    )
