"""
Appointment event emitter.

Every accepted lifecycle transition records one AppointmentEvent row in the
same transaction as the state change. Once that transaction commits the
pending events are handed to the notification queue. An event whose hand-off
fails keeps ``enqueued_at`` empty and is picked up again by
``redeliver_pending``, so delivery is at-least-once.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.models.appointment import ActorRole, Appointment
from app.models.notification import AppointmentEvent, TransitionKind
from app.schemas.actor import Actor


logger = logging.getLogger(__name__)

# Receives the wire form of one event; raising means the hand-off failed
EventDispatcher = Callable[[dict], None]


def celery_dispatcher(message: dict) -> None:
    """Hand an event to the Celery notifications queue."""
    from app.services.notification_service import deliver_appointment_event

    deliver_appointment_event.apply_async(args=[message])


def counterpart_of(appointment: Appointment, actor: Actor) -> Actor:
    """The participant on the other side of ``actor``."""
    if actor.role == ActorRole.SUBJECT:
        return Actor(role=ActorRole.PROVIDER, id=appointment.provider_id)
    return Actor(role=ActorRole.SUBJECT, id=appointment.subject_id)


def appointment_payload(appointment: Appointment, **extra) -> dict:
    payload = {
        "appointment_uuid": str(appointment.uuid),
        "provider_id": appointment.provider_id,
        "subject_id": appointment.subject_id,
        "status": appointment.status,
        "appointment_type": appointment.appointment_type,
        "scheduled_start": appointment.scheduled_start.isoformat(),
        "scheduled_end": appointment.scheduled_end.isoformat(),
        "is_remote": appointment.is_remote,
    }
    if appointment.proposed_start is not None:
        payload["proposed_start"] = appointment.proposed_start.isoformat()
    for key, value in extra.items():
        if value is not None:
            payload[key] = value
    return payload


class AppointmentEventEmitter:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.dispatcher = dispatcher or celery_dispatcher
        self.clock = clock
        self._pending: List[AppointmentEvent] = []

    def record(
        self,
        appointment: Appointment,
        kind: TransitionKind,
        actor: Actor,
        recipient: Optional[Actor] = None,
        occurred_at: Optional[datetime] = None,
        **extra,
    ) -> AppointmentEvent:
        """Add one event to the current transaction.

        The appointment must already be flushed so it has an id.
        """
        recipient = recipient or counterpart_of(appointment, actor)
        event = AppointmentEvent(
            appointment_id=appointment.id,
            transition_kind=kind.value,
            actor_role=actor.role.value,
            actor_id=actor.id,
            recipient_role=recipient.role.value,
            recipient_id=recipient.id,
            occurred_at=occurred_at or self.clock(),
            payload=appointment_payload(appointment, **extra),
        )
        self.db.add(event)
        self._pending.append(event)
        return event

    def discard_pending(self) -> None:
        """Forget events of a rolled back transaction."""
        self._pending = []

    async def dispatch_pending(self) -> int:
        """Hand events of the committed transaction to the queue."""
        events, self._pending = self._pending, []
        if not events:
            return 0
        return await self._dispatch(events)

    async def redeliver_pending(
        self, older_than: timedelta = timedelta(minutes=1), limit: int = 100
    ) -> int:
        """Re-enqueue events whose original hand-off never succeeded."""
        cutoff = self.clock() - older_than
        result = await self.db.execute(
            select(AppointmentEvent)
            .where(
                AppointmentEvent.enqueued_at.is_(None),
                AppointmentEvent.occurred_at <= cutoff,
            )
            .order_by(AppointmentEvent.id)
            .limit(limit)
        )
        events = list(result.scalars().all())
        if not events:
            return 0

        logger.info(f"Redelivering {len(events)} appointment events")
        return await self._dispatch(events)

    async def _dispatch(self, events: List[AppointmentEvent]) -> int:
        delivered = 0
        for event in events:
            try:
                await asyncio.to_thread(self.dispatcher, event.to_message())
            except Exception as e:
                # Left with enqueued_at unset for redeliver_pending
                logger.warning(
                    f"Failed to enqueue {event.transition_kind} event "
                    f"for appointment {event.appointment_id}: {e}"
                )
                continue
            event.enqueued_at = self.clock()
            delivered += 1

        if delivered:
            await self.db.commit()
        return delivered
