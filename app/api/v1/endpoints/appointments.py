from datetime import datetime
from math import ceil
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps.actor import get_current_actor
from app.api.deps.engine import get_appointment_service
from app.schemas.actor import Actor
from app.schemas.appointment import (
    Appointment,
    AppointmentCancel,
    AppointmentCompletion,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentList,
    AppointmentStatusSchema,
    CompletionResult,
    ProviderDecision,
    RescheduleProposal,
    RescheduleResponse,
)
from app.services.appointment import AppointmentService

router = APIRouter()


@router.post("/", response_model=Appointment, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Request an appointment. The provider has to confirm it."""
    return await service.create_appointment(appointment_data, actor)


@router.get("/", response_model=AppointmentList)
async def list_appointments(
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
    status: Optional[AppointmentStatusSchema] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_order: Literal["asc", "desc"] = Query("asc"),
):
    """The caller's own appointments, as subject or as provider."""
    filters = AppointmentFilters(
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
        sort_order=sort_order,
    )
    appointments, total_count = await service.list_appointments(actor, filters)

    return AppointmentList(
        appointments=[Appointment.model_validate(a) for a in appointments],
        total_count=total_count,
        page=page,
        page_size=page_size,
        total_pages=ceil(total_count / page_size) if total_count else 0,
    )


@router.get("/{appointment_uuid}", response_model=Appointment)
async def get_appointment(
    appointment_uuid: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.get_appointment(appointment_uuid, actor)


@router.post("/{appointment_uuid}/decision", response_model=Appointment)
async def decide_appointment(
    appointment_uuid: UUID,
    decision: ProviderDecision,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Provider confirms or rejects a pending request."""
    return await service.decide(appointment_uuid, decision, actor)


@router.post("/{appointment_uuid}/reschedule", response_model=Appointment)
async def propose_reschedule(
    appointment_uuid: UUID,
    proposal: RescheduleProposal,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Provider proposes a new time; the subject has to accept it."""
    return await service.propose_reschedule(appointment_uuid, proposal, actor)


@router.post("/{appointment_uuid}/reschedule/response", response_model=Appointment)
async def respond_to_reschedule(
    appointment_uuid: UUID,
    response: RescheduleResponse,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Subject accepts the proposed time or declines, which cancels."""
    return await service.respond_to_reschedule(appointment_uuid, response, actor)


@router.post("/{appointment_uuid}/complete", response_model=CompletionResult)
async def complete_appointment(
    appointment_uuid: UUID,
    completion: AppointmentCompletion,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Provider completes the visit, optionally booking a follow-up."""
    appointment, follow_up = await service.complete(appointment_uuid, completion, actor)
    return CompletionResult(
        appointment=Appointment.model_validate(appointment),
        follow_up=Appointment.model_validate(follow_up) if follow_up else None,
    )


@router.post("/{appointment_uuid}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_uuid: UUID,
    cancellation: AppointmentCancel,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.cancel(appointment_uuid, cancellation, actor)
