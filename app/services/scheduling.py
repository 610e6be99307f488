from datetime import datetime, timedelta, date as date_type, time
from typing import List, Optional
import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, provider_local_now, utc_now
from app.core.exceptions import UpstreamUnavailable
from app.models.appointment import Appointment, AppointmentStatus, OCCUPYING_STATUSES
from app.models.blocked_time import BlockedTime
from app.schemas.scheduling import (
    BookingValidationResult,
    ClosedDay,
    Interval,
    IntervalSource,
    ProviderSchedule,
    SlotQueryResult,
)
from app.services.availability import resolve_open_window
from app.services.booking_validator import validate_booking
from app.services.provider_directory import ProviderDirectoryService
from app.services.slots import generate_slots


logger = logging.getLogger(__name__)

MAX_AVAILABLE_DAYS_RANGE = 62


class SchedulingEngineService:
    """Slot queries and booking validation over live provider data."""

    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.directory = ProviderDirectoryService(db)

    def local_now(self, schedule: ProviderSchedule) -> datetime:
        """Authoritative now in the provider's local clock, timezone-naive."""
        return provider_local_now(self.clock, schedule.timezone)

    async def get_conflict_set(
        self,
        provider_id: int,
        day: date_type,
        exclude_appointment_id: Optional[int] = None,
    ) -> List[Interval]:
        """
        Fetch every interval that makes part of ``day`` unbookable.

        This covers occupying appointments, outstanding reschedule proposals
        and blocked time. ``exclude_appointment_id`` drops one appointment's
        own interval and proposal, which a reschedule of that appointment
        must not collide with. Always read fresh; never cached.

        Raises:
            UpstreamUnavailable: the conflict source could not be read
        """
        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)
        occupying = [s.value for s in OCCUPYING_STATUSES]

        appointments_query = select(Appointment).where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(occupying),
                Appointment.scheduled_start < day_end,
                Appointment.scheduled_end > day_start,
            )
        )
        proposals_query = select(Appointment).where(
            and_(
                Appointment.provider_id == provider_id,
                Appointment.status == AppointmentStatus.RESCHEDULED.value,
                Appointment.proposed_start.is_not(None),
                Appointment.proposed_start < day_end,
                Appointment.proposed_end > day_start,
            )
        )
        if exclude_appointment_id is not None:
            appointments_query = appointments_query.where(
                Appointment.id != exclude_appointment_id
            )
            proposals_query = proposals_query.where(
                Appointment.id != exclude_appointment_id
            )
        blocked_query = select(BlockedTime).where(
            and_(
                BlockedTime.provider_id == provider_id,
                BlockedTime.blocked_date == day,
            )
        )

        try:
            booked = (await self.db.execute(appointments_query)).scalars().all()
            proposed = (await self.db.execute(proposals_query)).scalars().all()
            blocked = (await self.db.execute(blocked_query)).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Conflict set unavailable for provider {provider_id} on {day}: {e}")
            raise UpstreamUnavailable("Booking conflict source is unreachable") from e

        intervals = [
            Interval(
                start=a.scheduled_start,
                end=a.scheduled_end,
                source=IntervalSource.APPOINTMENT,
                reference=str(a.uuid),
            )
            for a in booked
        ]
        intervals += [
            Interval(
                start=a.proposed_start,
                end=a.proposed_end,
                source=IntervalSource.PROPOSAL,
                reference=str(a.uuid),
            )
            for a in proposed
        ]
        intervals += [
            Interval(
                start=b.start_datetime,
                end=b.end_datetime,
                source=IntervalSource.BLOCKED,
                reference=str(b.uuid),
            )
            for b in blocked
        ]

        logger.debug(
            f"Conflict set for provider {provider_id} on {day}: "
            f"{len(booked)} booked, {len(proposed)} proposed, {len(blocked)} blocked"
        )
        return sorted(intervals, key=lambda i: (i.start, i.end))

    async def query_available_slots(
        self, provider_id: int, day: date_type
    ) -> SlotQueryResult:
        """
        Advisory slot listing for one provider and date.

        A missing provider or unreadable schedule raises. An unreadable
        conflict set does not: the slots come back all free with
        ``degraded`` set, and the booking path re-validates anyway.
        """
        schedule = await self.directory.get_schedule(provider_id)
        window = resolve_open_window(schedule, day)

        result = SlotQueryResult(
            provider_id=provider_id,
            date=day,
            is_open=not isinstance(window, ClosedDay),
            closed_reason=window.reason if isinstance(window, ClosedDay) else None,
            slot_duration_minutes=schedule.slot_duration_minutes,
        )
        if isinstance(window, ClosedDay):
            return result

        try:
            conflicts = await self.get_conflict_set(provider_id, day)
        except UpstreamUnavailable as e:
            logger.warning(
                f"Serving degraded slots for provider {provider_id} on {day}: {e.message}"
            )
            await self.db.rollback()
            conflicts = []
            result.degraded = True
            result.degraded_reason = e.message

        result.slots = generate_slots(window, schedule.granularity, conflicts, day)
        return result

    async def get_available_days(
        self, provider_id: int, start_date: date_type, end_date: date_type
    ) -> List[date_type]:
        """Dates in ``[start_date, end_date]`` with at least one free future slot."""
        if end_date < start_date:
            return []
        if (end_date - start_date).days + 1 > MAX_AVAILABLE_DAYS_RANGE:
            raise ValueError(
                f"Date range cannot exceed {MAX_AVAILABLE_DAYS_RANGE} days"
            )

        schedule = await self.directory.get_schedule(provider_id)
        now = self.local_now(schedule)

        available_days = []
        current_date = start_date
        while current_date <= end_date:
            window = resolve_open_window(schedule, current_date)
            if not isinstance(window, ClosedDay) and current_date >= now.date():
                conflicts = await self.get_conflict_set(provider_id, current_date)
                slots = generate_slots(window, schedule.granularity, conflicts, current_date)
                if any(s.is_free and s.start_datetime > now for s in slots):
                    available_days.append(current_date)
            current_date += timedelta(days=1)

        logger.info(
            f"Found {len(available_days)} available days for provider {provider_id} "
            f"between {start_date} and {end_date}"
        )
        return available_days

    async def validate_candidate(
        self,
        provider_id: int,
        candidate_start: datetime,
        exclude_appointment_id: Optional[int] = None,
    ) -> BookingValidationResult:
        """Run the booking validator against a fresh conflict set.

        Never degrades: an unreadable conflict set raises UpstreamUnavailable.
        """
        schedule = await self.directory.get_schedule(provider_id)
        return await self._validate_against(schedule, candidate_start, exclude_appointment_id)

    async def ensure_bookable(
        self,
        provider_id: int,
        candidate_start: datetime,
        exclude_appointment_id: Optional[int] = None,
        duration: Optional[timedelta] = None,
    ) -> ProviderSchedule:
        """Commit-time check; raises the matching error if the slot cannot be booked."""
        schedule = await self.directory.get_schedule(provider_id)
        result = await self._validate_against(
            schedule, candidate_start, exclude_appointment_id, duration
        )
        if not result.is_valid:
            logger.info(
                f"Rejected booking for provider {provider_id} at {candidate_start}: "
                f"{result.reason.value}"
            )
        result.raise_for_rejection()
        return schedule

    async def _validate_against(
        self,
        schedule: ProviderSchedule,
        candidate_start: datetime,
        exclude_appointment_id: Optional[int],
        duration: Optional[timedelta] = None,
    ) -> BookingValidationResult:
        conflicts = await self.get_conflict_set(
            schedule.provider_id, candidate_start.date(), exclude_appointment_id
        )
        return validate_booking(
            schedule, conflicts, candidate_start, self.local_now(schedule), duration
        )
