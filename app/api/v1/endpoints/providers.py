from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps.actor import get_current_actor
from app.api.deps.engine import get_provider_directory
from app.schemas.actor import Actor
from app.schemas.provider import (
    BlockedTime,
    BlockedTimeCreate,
    ProviderScheduleResponse,
    ScheduleUpdate,
)
from app.services.provider_directory import ProviderDirectoryService

router = APIRouter()


@router.get("/{provider_id}/schedule", response_model=ProviderScheduleResponse)
async def get_provider_schedule(
    provider_id: int,
    directory: ProviderDirectoryService = Depends(get_provider_directory),
):
    return await directory.get_schedule_view(provider_id)


@router.put("/{provider_id}/schedule", response_model=ProviderScheduleResponse)
async def update_provider_schedule(
    provider_id: int,
    update: ScheduleUpdate,
    actor: Actor = Depends(get_current_actor),
    directory: ProviderDirectoryService = Depends(get_provider_directory),
):
    """
    Replace the provider's weekly availability and slot granularity.

    Existing appointments are kept as booked even if they now fall outside
    the new working hours.
    """
    return await directory.update_schedule(provider_id, update, actor)


@router.get("/{provider_id}/blocked-times", response_model=List[BlockedTime])
async def list_blocked_times(
    provider_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    directory: ProviderDirectoryService = Depends(get_provider_directory),
):
    return await directory.list_blocked_times(provider_id, start_date, end_date)


@router.post(
    "/{provider_id}/blocked-times",
    response_model=BlockedTime,
    status_code=status.HTTP_201_CREATED,
)
async def add_blocked_time(
    provider_id: int,
    data: BlockedTimeCreate,
    actor: Actor = Depends(get_current_actor),
    directory: ProviderDirectoryService = Depends(get_provider_directory),
):
    return await directory.add_blocked_time(provider_id, data, actor)


@router.delete(
    "/{provider_id}/blocked-times/{blocked_uuid}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_blocked_time(
    provider_id: int,
    blocked_uuid: UUID,
    actor: Actor = Depends(get_current_actor),
    directory: ProviderDirectoryService = Depends(get_provider_directory),
):
    await directory.remove_blocked_time(provider_id, blocked_uuid, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
