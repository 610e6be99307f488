import asyncio

import httpx
import structlog

from app.core.celery import celery_app
from app.core.config import settings
from app.core.database import AsyncSessionLocal, engine
from app.services.notifications import AppointmentEventEmitter
from app.services.reminders import ReminderService

logger = structlog.get_logger(__name__)


@celery_app.task(
    bind=True,
    autoretry_for=(httpx.HTTPError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 8},
)
def deliver_appointment_event(self, message: dict) -> dict:
    """Post one appointment event to the notification webhook.

    The event id travels as an idempotency key; the receiver may see the same
    event more than once.
    """
    log = logger.bind(
        event_id=message.get("event_id"),
        transition_kind=message.get("transition_kind"),
        appointment_id=message.get("appointment_id"),
        attempt=self.request.retries,
    )

    if not settings.NOTIFICATION_WEBHOOK_URL:
        log.warning("No notification webhook configured, event not delivered")
        return {"delivered": False}

    with httpx.Client(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS) as client:
        response = client.post(
            settings.NOTIFICATION_WEBHOOK_URL,
            json=message,
            headers={"Idempotency-Key": str(message.get("event_id"))},
        )
        response.raise_for_status()

    log.info("Appointment event delivered", status_code=response.status_code)
    return {"delivered": True, "status_code": response.status_code}


async def _redeliver_pending_events() -> int:
    try:
        async with AsyncSessionLocal() as session:
            emitter = AppointmentEventEmitter(session)
            return await emitter.redeliver_pending()
    finally:
        # Pooled connections are bound to this run's event loop
        await engine.dispose()


async def _send_appointment_reminders() -> int:
    try:
        async with AsyncSessionLocal() as session:
            service = ReminderService(session, emitter=AppointmentEventEmitter(session))
            return await service.send_due_reminders()
    finally:
        await engine.dispose()


@celery_app.task
def redeliver_pending_events() -> int:
    """Periodic sweep for events whose queue hand-off failed."""
    count = asyncio.run(_redeliver_pending_events())
    if count:
        logger.info("Redelivered appointment events", count=count)
    return count


@celery_app.task
def send_appointment_reminders() -> int:
    """Periodic 24-hour reminder scan; scheduled by an external beat."""
    count = asyncio.run(_send_appointment_reminders())
    logger.info("Appointment reminders sent", count=count)
    return count
