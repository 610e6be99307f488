from datetime import datetime, timedelta
from typing import Iterable, Optional

from app.schemas.scheduling import (
    BookingValidationResult,
    ClosedDay,
    Interval,
    ProviderSchedule,
    RejectionReason,
)
from app.services.availability import resolve_open_window
from app.services.slots import overlaps_any


def validate_booking(
    schedule: ProviderSchedule,
    conflicts: Iterable[Interval],
    candidate_start: datetime,
    now: datetime,
    duration: Optional[timedelta] = None,
) -> BookingValidationResult:
    """
    Decide whether ``candidate_start`` can be booked.

    Checks run in order and the first failure wins: past time, provider
    closed, slot taken. ``candidate_start`` and ``now`` are both naive and in
    the provider's local clock. ``duration`` is the length to reserve and
    defaults to one slot.
    """
    if candidate_start <= now:
        return BookingValidationResult.rejected(
            RejectionReason.PAST_DATE_TIME,
            f"Requested start {candidate_start.isoformat()} is not in the future",
        )

    window = resolve_open_window(schedule, candidate_start.date())
    if isinstance(window, ClosedDay):
        return BookingValidationResult.rejected(
            RejectionReason.PROVIDER_CLOSED,
            f"Provider does not work on {candidate_start.date().isoformat()} "
            f"({window.reason.value})",
        )

    length = duration or schedule.granularity
    open_at = datetime.combine(candidate_start.date(), window.open_time)
    last_start = datetime.combine(candidate_start.date(), window.close_time) - length
    if not (open_at <= candidate_start <= last_start):
        return BookingValidationResult.rejected(
            RejectionReason.PROVIDER_CLOSED,
            f"Requested start {candidate_start.time().isoformat()} is outside working "
            f"hours {window.open_time.isoformat()}-{window.close_time.isoformat()}",
        )

    if overlaps_any(candidate_start, candidate_start + length, conflicts):
        return BookingValidationResult.rejected(
            RejectionReason.SLOT_TAKEN,
            f"Requested start {candidate_start.isoformat()} overlaps an existing booking",
        )

    return BookingValidationResult.ok()
