from datetime import time, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import NotFound, UpstreamUnavailable
from app.models.appointment import AppointmentStatus
from app.models.blocked_time import BlockedTime
from app.schemas.scheduling import ClosedReason, IntervalSource, RejectionReason
from app.services.scheduling import SchedulingEngineService
from tests.fixtures.scheduling_fixtures import (
    NEXT_MONDAY,
    NEXT_SATURDAY,
    NEXT_SUNDAY,
    at,
    create_appointment_row,
    create_provider,
)


@pytest.fixture
def engine(db, clock):
    return SchedulingEngineService(db, clock=clock)


@pytest.fixture
async def morning_provider(db):
    """Monday-only 09:00-12:00 with 30 minute slots."""
    from app.models.working_hours import WeekDay

    return await create_provider(
        db,
        name="Dr. Morning",
        open_time=time(9),
        close_time=time(12),
        weekdays=(WeekDay.MONDAY,),
        disabled=(),
        timezone="UTC",
        slot_duration_minutes=30,
    )


class TestQueryAvailableSlots:
    @pytest.mark.asyncio
    async def test_open_morning_all_free(self, engine, morning_provider):
        result = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)

        assert result.is_open
        assert not result.degraded
        assert [s.start_time for s in result.slots] == [
            time(9), time(9, 30), time(10), time(10, 30), time(11), time(11, 30)
        ]
        assert all(s.is_free for s in result.slots)

    @pytest.mark.asyncio
    async def test_existing_booking_marks_slot_taken(self, db, engine, morning_provider):
        await create_appointment_row(db, morning_provider, at(NEXT_MONDAY, 10))

        result = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)

        assert [s.start_time for s in result.slots if not s.is_free] == [time(10)]

    @pytest.mark.asyncio
    async def test_cancelled_and_completed_do_not_occupy(self, db, engine, morning_provider):
        await create_appointment_row(
            db, morning_provider, at(NEXT_MONDAY, 9), status=AppointmentStatus.CANCELLED
        )
        await create_appointment_row(
            db, morning_provider, at(NEXT_MONDAY, 9, 30), status=AppointmentStatus.COMPLETED
        )
        await create_appointment_row(
            db, morning_provider, at(NEXT_MONDAY, 11), status=AppointmentStatus.PENDING
        )

        result = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)

        assert [s.start_time for s in result.slots if not s.is_free] == [time(11)]

    @pytest.mark.asyncio
    async def test_closed_days_report_reason(self, engine, provider):
        saturday = await engine.query_available_slots(provider.id, NEXT_SATURDAY)
        sunday = await engine.query_available_slots(provider.id, NEXT_SUNDAY)

        assert not saturday.is_open and saturday.slots == []
        assert saturday.closed_reason == ClosedReason.DISABLED
        assert sunday.closed_reason == ClosedReason.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_degraded_when_conflicts_unreadable(self, db, engine, morning_provider):
        await create_appointment_row(db, morning_provider, at(NEXT_MONDAY, 10))

        with patch.object(
            engine,
            "get_conflict_set",
            AsyncMock(side_effect=UpstreamUnavailable("Booking conflict source is unreachable")),
        ):
            result = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)

        assert result.degraded
        assert result.degraded_reason == "Booking conflict source is unreachable"
        assert len(result.slots) == 6
        assert all(s.is_free for s in result.slots)

    @pytest.mark.asyncio
    async def test_repeated_query_is_identical(self, db, engine, morning_provider):
        await create_appointment_row(db, morning_provider, at(NEXT_MONDAY, 10))

        first = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)
        second = await engine.query_available_slots(morning_provider.id, NEXT_MONDAY)

        assert first == second

    @pytest.mark.asyncio
    async def test_legacy_provider(self, engine, legacy_provider):
        result = await engine.query_available_slots(legacy_provider.id, NEXT_MONDAY)
        tuesday = await engine.query_available_slots(
            legacy_provider.id, NEXT_MONDAY + timedelta(days=1)
        )

        assert [s.start_time for s in result.slots] == [time(10), time(11), time(12), time(13)]
        assert tuesday.closed_reason == ClosedReason.DISABLED

    @pytest.mark.asyncio
    async def test_unknown_provider(self, engine):
        with pytest.raises(NotFound):
            await engine.query_available_slots(999, NEXT_MONDAY)


class TestConflictSet:
    @pytest.mark.asyncio
    async def test_includes_bookings_proposals_and_blocked_time(self, db, engine, provider):
        booked = await create_appointment_row(db, provider, at(NEXT_MONDAY, 9))
        rescheduled = await create_appointment_row(
            db,
            provider,
            at(NEXT_MONDAY - timedelta(days=1), 10),
            status=AppointmentStatus.RESCHEDULED,
            proposed_start=at(NEXT_MONDAY, 14),
            proposed_end=at(NEXT_MONDAY, 14, 30),
        )
        db.add(
            BlockedTime(
                provider_id=provider.id,
                blocked_date=NEXT_MONDAY,
                start_time=time(12),
                end_time=time(13),
            )
        )
        await db.commit()

        conflicts = await engine.get_conflict_set(provider.id, NEXT_MONDAY)

        assert [(c.source, c.start) for c in conflicts] == [
            (IntervalSource.APPOINTMENT, at(NEXT_MONDAY, 9)),
            (IntervalSource.BLOCKED, at(NEXT_MONDAY, 12)),
            (IntervalSource.PROPOSAL, at(NEXT_MONDAY, 14)),
        ]
        assert conflicts[0].reference == str(booked.uuid)
        assert conflicts[2].reference == str(rescheduled.uuid)

    @pytest.mark.asyncio
    async def test_excludes_own_interval_and_proposal(self, db, engine, provider):
        appointment = await create_appointment_row(
            db,
            provider,
            at(NEXT_MONDAY, 9),
            status=AppointmentStatus.RESCHEDULED,
            proposed_start=at(NEXT_MONDAY, 15),
            proposed_end=at(NEXT_MONDAY, 15, 30),
        )

        conflicts = await engine.get_conflict_set(
            provider.id, NEXT_MONDAY, exclude_appointment_id=appointment.id
        )

        assert conflicts == []

    @pytest.mark.asyncio
    async def test_other_providers_are_ignored(self, db, engine, provider, legacy_provider):
        await create_appointment_row(db, legacy_provider, at(NEXT_MONDAY, 10))

        assert await engine.get_conflict_set(provider.id, NEXT_MONDAY) == []

    @pytest.mark.asyncio
    async def test_database_failure_is_upstream_unavailable(self, db, engine, provider):
        failure = OperationalError("SELECT", {}, Exception("connection reset"))

        with patch.object(db, "execute", AsyncMock(side_effect=failure)):
            with pytest.raises(UpstreamUnavailable):
                await engine.get_conflict_set(provider.id, NEXT_MONDAY)


class TestValidateCandidate:
    @pytest.mark.asyncio
    async def test_valid_slot(self, engine, provider):
        result = await engine.validate_candidate(provider.id, at(NEXT_MONDAY, 10))

        assert result.is_valid

    @pytest.mark.asyncio
    async def test_sunday_rejected_as_closed(self, engine, provider):
        result = await engine.validate_candidate(provider.id, at(NEXT_SUNDAY, 10))

        assert result.reason == RejectionReason.PROVIDER_CLOSED

    @pytest.mark.asyncio
    async def test_past_uses_authoritative_clock(self, engine, clock, provider):
        clock.advance(days=7, hours=3)  # Monday 2024-06-10 11:00 UTC

        result = await engine.validate_candidate(provider.id, at(NEXT_MONDAY, 10))

        assert result.reason == RejectionReason.PAST_DATE_TIME

    @pytest.mark.asyncio
    async def test_past_uses_provider_timezone(self, db, engine, clock):
        # 08:00 UTC is 17:00 in Tokyo, so a 16:30 Tokyo start is already past
        tokyo = await create_provider(
            db,
            name="Dr. Tokyo",
            timezone="Asia/Tokyo",
            slot_duration_minutes=30,
            open_time=time(9),
            close_time=time(18),
        )
        clock.advance(days=7)

        result = await engine.validate_candidate(tokyo.id, at(NEXT_MONDAY, 16, 30))

        assert result.reason == RejectionReason.PAST_DATE_TIME

    @pytest.mark.asyncio
    async def test_taken_slot(self, db, engine, provider):
        await create_appointment_row(db, provider, at(NEXT_MONDAY, 10))

        result = await engine.validate_candidate(provider.id, at(NEXT_MONDAY, 10))

        assert result.reason == RejectionReason.SLOT_TAKEN

    @pytest.mark.asyncio
    async def test_never_degrades(self, engine, provider):
        with patch.object(
            engine, "get_conflict_set", AsyncMock(side_effect=UpstreamUnavailable())
        ):
            with pytest.raises(UpstreamUnavailable):
                await engine.validate_candidate(provider.id, at(NEXT_MONDAY, 10))


class TestAvailableDays:
    @pytest.mark.asyncio
    async def test_skips_closed_and_full_days(self, db, engine, morning_provider):
        for slot in range(6):
            await create_appointment_row(
                db, morning_provider, at(NEXT_MONDAY, 9) + timedelta(minutes=30 * slot)
            )

        days = await engine.get_available_days(
            morning_provider.id, NEXT_MONDAY - timedelta(days=7), NEXT_MONDAY + timedelta(days=7)
        )

        # The current Monday starts at 09:00, after "now" (08:00)
        assert days == [NEXT_MONDAY - timedelta(days=7), NEXT_MONDAY + timedelta(days=7)]

    @pytest.mark.asyncio
    async def test_range_limit(self, engine, provider):
        with pytest.raises(ValueError):
            await engine.get_available_days(
                provider.id, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=90)
            )

    @pytest.mark.asyncio
    async def test_inverted_range_is_empty(self, engine, provider):
        assert await engine.get_available_days(
            provider.id, NEXT_MONDAY, NEXT_MONDAY - timedelta(days=1)
        ) == []
