from datetime import date as date_type, datetime, timedelta
from typing import Iterable, List, Union

from app.schemas.scheduling import ClosedDay, Interval, OpenWindow, Slot


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def overlaps_any(start: datetime, end: datetime, conflicts: Iterable[Interval]) -> bool:
    return any(intervals_overlap(start, end, c.start, c.end) for c in conflicts)


def generate_slots(
    window: Union[OpenWindow, ClosedDay],
    granularity: timedelta,
    conflicts: Iterable[Interval],
    day: date_type,
) -> List[Slot]:
    """
    Enumerate the bookable slots of ``day`` in ascending order.

    A slot is emitted only if it fits entirely before close; a trailing
    fragment shorter than the granularity is dropped.
    """
    if isinstance(window, ClosedDay):
        return []
    if granularity <= timedelta(0):
        raise ValueError("Slot granularity must be positive")

    conflicts = list(conflicts)
    slots = []
    current = datetime.combine(day, window.open_time)
    close = datetime.combine(day, window.close_time)

    while current + granularity <= close:
        end = current + granularity
        slots.append(
            Slot(
                date=day,
                start_time=current.time(),
                end_time=end.time(),
                is_free=not overlaps_any(current, end, conflicts),
            )
        )
        current = end

    return slots
