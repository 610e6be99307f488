from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps.engine import get_scheduling_engine
from app.schemas.scheduling import (
    AvailableDaysResult,
    BookingValidationRequest,
    BookingValidationResult,
    SlotQueryResult,
)
from app.services.scheduling import SchedulingEngineService

router = APIRouter()


@router.get("/providers/{provider_id}/slots", response_model=SlotQueryResult)
async def get_available_slots(
    provider_id: int,
    date: date = Query(..., description="Calendar date in the provider's local clock"),
    engine: SchedulingEngineService = Depends(get_scheduling_engine),
):
    """
    List a provider's slots for one date, each marked free or taken.

    The listing is advisory and never cached. When the booking store cannot
    be read the slots are returned all free with ``degraded`` set; a booking
    attempt is always re-validated.
    """
    return await engine.query_available_slots(provider_id, date)


@router.get("/providers/{provider_id}/available-days", response_model=AvailableDaysResult)
async def get_available_days(
    provider_id: int,
    start_date: date = Query(..., description="First date of the range (inclusive)"),
    end_date: date = Query(None, description="Last date of the range (inclusive)"),
    engine: SchedulingEngineService = Depends(get_scheduling_engine),
):
    """Dates in a range that still have at least one free future slot."""
    end_date = end_date or start_date + timedelta(days=30)
    try:
        days = await engine.get_available_days(provider_id, start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return AvailableDaysResult(
        provider_id=provider_id, start_date=start_date, end_date=end_date, days=days
    )


@router.post("/validate", response_model=BookingValidationResult)
async def validate_booking_candidate(
    request: BookingValidationRequest,
    engine: SchedulingEngineService = Depends(get_scheduling_engine),
):
    """
    Check whether a start time could be booked right now.

    Rejections come back as a result with a reason, not as an error. The
    check is repeated under the booking lock when the appointment is created.
    """
    candidate = request.scheduled_start.replace(tzinfo=None)
    return await engine.validate_candidate(request.provider_id, candidate)
