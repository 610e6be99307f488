from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, provider_local_now, utc_now
from app.core.config import settings
from app.models.appointment import ActorRole, Appointment, AppointmentStatus
from app.models.notification import TransitionKind
from app.models.provider import Provider
from app.schemas.actor import SYSTEM_ACTOR, Actor
from app.services.notifications import AppointmentEventEmitter


logger = logging.getLogger(__name__)

# Widest spread of UTC offsets; narrows the candidate query before the
# per-provider local-time check.
_MAX_UTC_OFFSET = timedelta(hours=14)


class ReminderService:
    """Sends the 24-hour reminder for confirmed appointments."""

    def __init__(
        self,
        db: AsyncSession,
        emitter: Optional[AppointmentEventEmitter] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.emitter = emitter or AppointmentEventEmitter(db, clock=clock)

    async def send_due_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Emit a reminder to both participants of every confirmed appointment
        starting between ``REMINDER_LEAD_HOURS`` and ``REMINDER_LEAD_HOURS +
        REMINDER_WINDOW_HOURS`` from now in the provider's local clock.

        Each appointment is reminded once; an accepted reschedule re-arms it.

        Returns:
            Number of appointments reminded
        """
        now = now or self.clock()
        lead = timedelta(hours=settings.REMINDER_LEAD_HOURS)
        window = timedelta(hours=settings.REMINDER_WINDOW_HOURS)

        utc_naive = now.astimezone(timezone.utc).replace(tzinfo=None)
        query = (
            select(Appointment, Provider.timezone)
            .join(Provider, Provider.id == Appointment.provider_id)
            .where(
                and_(
                    Appointment.status == AppointmentStatus.CONFIRMED.value,
                    Appointment.reminder_sent.is_(False),
                    Appointment.scheduled_start >= utc_naive + lead - _MAX_UTC_OFFSET,
                    Appointment.scheduled_start < utc_naive + lead + window + _MAX_UTC_OFFSET,
                )
            )
            .order_by(Appointment.scheduled_start)
            .with_for_update(skip_locked=True, of=Appointment)
        )
        rows = (await self.db.execute(query)).all()

        reminded = 0
        try:
            for appointment, tz_name in rows:
                local_now = provider_local_now(lambda: now, tz_name)
                if not (local_now + lead <= appointment.scheduled_start < local_now + lead + window):
                    continue

                for recipient in (
                    Actor(role=ActorRole.SUBJECT, id=appointment.subject_id),
                    Actor(role=ActorRole.PROVIDER, id=appointment.provider_id),
                ):
                    self.emitter.record(
                        appointment,
                        TransitionKind.REMINDER_24H,
                        SYSTEM_ACTOR,
                        recipient=recipient,
                        occurred_at=now,
                    )
                appointment.reminder_sent = True
                reminded += 1

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            self.emitter.discard_pending()
            raise

        if reminded:
            logger.info(f"Queued 24h reminders for {reminded} appointments")
        await self.emitter.dispatch_pending()
        return reminded
