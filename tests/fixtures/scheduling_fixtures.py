from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import UpstreamUnavailable
from app.models.appointment import Appointment, AppointmentStatus
from app.models.provider import Provider
from app.models.working_hours import WeekDay, WorkingHours

# Monday 2024-06-03 08:00 UTC
FIXED_NOW = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)
NEXT_MONDAY = date(2024, 6, 10)
NEXT_SATURDAY = date(2024, 6, 15)
NEXT_SUNDAY = date(2024, 6, 16)

WORKDAYS = (
    WeekDay.MONDAY,
    WeekDay.TUESDAY,
    WeekDay.WEDNESDAY,
    WeekDay.THURSDAY,
    WeekDay.FRIDAY,
)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


class MutableClock:
    """Authoritative clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBookingLock:
    """Stands in for the Redis booking lock and records every key taken."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.acquired = []

    def __call__(self, provider_id: int, day: date):
        @asynccontextmanager
        async def _lock():
            if self.fail:
                raise UpstreamUnavailable(
                    "Another booking for this provider and date is in progress"
                )
            self.acquired.append((provider_id, day))
            yield

        return _lock()


class RecordingDispatcher:
    """Collects event messages instead of sending them to Celery."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    def __call__(self, message: dict) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.messages.append(message)

    def kinds(self):
        return [m["transition_kind"] for m in self.messages]


async def create_provider(
    db: AsyncSession,
    name: str = "Dr. Weekday",
    open_time: time = time(9, 0),
    close_time: time = time(17, 0),
    weekdays=WORKDAYS,
    disabled=(WeekDay.SATURDAY,),
    **kwargs,
) -> Provider:
    """Provider on the per-weekday schedule; days in neither list stay unconfigured."""
    provider = Provider(name=name, **kwargs)
    provider.working_hours = [
        WorkingHours(
            weekday=day.name, is_enabled=True, start_time=open_time, end_time=close_time
        )
        for day in weekdays
    ] + [WorkingHours(weekday=day.name, is_enabled=False) for day in disabled]
    db.add(provider)
    await db.commit()
    return provider


async def create_appointment_row(
    db: AsyncSession,
    provider: Provider,
    start: datetime,
    subject_id: int = 100,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    **kwargs,
) -> Appointment:
    """Insert an appointment directly, bypassing the lifecycle checks."""
    minutes = provider.slot_duration_minutes or 30
    appointment = Appointment(
        provider_id=provider.id,
        subject_id=subject_id,
        scheduled_start=start,
        scheduled_end=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        status=status.value,
        status_changed_at=FIXED_NOW,
        **kwargs,
    )
    db.add(appointment)
    await db.commit()
    return appointment


# Gateway headers
def subject_headers(subject_id: int = 100) -> dict[str, str]:
    return {"X-Actor-Role": "subject", "X-Actor-Id": str(subject_id)}


def provider_headers(provider_id: int) -> dict[str, str]:
    return {"X-Actor-Role": "provider", "X-Actor-Id": str(provider_id)}


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def booking_lock():
    return FakeBookingLock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def provider(db: AsyncSession) -> Provider:
    """Mon-Fri 09:00-17:00, Saturday disabled, Sunday not configured, 30m slots."""
    return await create_provider(db, timezone="UTC", slot_duration_minutes=30)


@pytest.fixture
async def remote_provider(db: AsyncSession) -> Provider:
    return await create_provider(
        db,
        name="Dr. Remote",
        timezone="UTC",
        slot_duration_minutes=30,
        supports_remote=True,
    )


@pytest.fixture
async def legacy_provider(db: AsyncSession) -> Provider:
    """Flat 10:00-14:00 window on Monday and Wednesday, hourly slots."""
    provider = Provider(
        name="Dr. Legacy",
        timezone="UTC",
        slot_duration_minutes=60,
        legacy_open_time=time(10, 0),
        legacy_close_time=time(14, 0),
        legacy_available_days=["Monday", "Wednesday"],
    )
    db.add(provider)
    await db.commit()
    return provider
