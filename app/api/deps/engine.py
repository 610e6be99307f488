from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.core.clock import Clock, utc_now
from app.core.redis import redis_client
from app.services.appointment import AppointmentService, BookingLock
from app.services.notifications import (
    AppointmentEventEmitter,
    EventDispatcher,
    celery_dispatcher,
)
from app.services.provider_directory import ProviderDirectoryService
from app.services.scheduling import SchedulingEngineService


def get_clock() -> Clock:
    return utc_now


def get_booking_lock() -> BookingLock:
    return redis_client.booking_lock


def get_dispatcher() -> EventDispatcher:
    return celery_dispatcher


def get_scheduling_engine(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SchedulingEngineService:
    return SchedulingEngineService(db, clock=clock)


def get_provider_directory(
    db: AsyncSession = Depends(get_db),
) -> ProviderDirectoryService:
    return ProviderDirectoryService(db)


def get_appointment_service(
    db: AsyncSession = Depends(get_db),
    lock: BookingLock = Depends(get_booking_lock),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    clock: Clock = Depends(get_clock),
) -> AppointmentService:
    emitter = AppointmentEventEmitter(db, dispatcher=dispatcher, clock=clock)
    return AppointmentService(db, lock=lock, emitter=emitter, clock=clock)
