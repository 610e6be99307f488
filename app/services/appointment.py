from datetime import date as date_type, datetime, timedelta
from typing import AsyncContextManager, Callable, Iterable, List, Optional, Tuple, Union
from uuid import UUID
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.exceptions import InvalidTransition, NotAuthorized, NotFound
from app.core.redis import redis_client
from app.models.appointment import (
    ActorRole,
    Appointment,
    AppointmentStatus,
    AppointmentType,
)
from app.models.notification import TransitionKind
from app.schemas.actor import Actor
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCompletion,
    AppointmentCreate,
    AppointmentFilters,
    DecisionSchema,
    ProviderDecision,
    RescheduleProposal,
    RescheduleResponse,
)
from app.services.notifications import AppointmentEventEmitter
from app.services.scheduling import SchedulingEngineService


logger = logging.getLogger(__name__)

# Serializes booking commits for one (provider_id, date)
BookingLock = Callable[[int, date_type], AsyncContextManager[None]]

COMPLETION_NOTES_HEADING = "Appointment Completion Notes"


class AppointmentService:
    """Appointment lifecycle: booking and every transition after it.

    Each public operation is one unit of work. The state change and its
    outbox event commit together; events go to the queue only after commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        lock: Optional[BookingLock] = None,
        emitter: Optional[AppointmentEventEmitter] = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.lock = lock or redis_client.booking_lock
        self.emitter = emitter or AppointmentEventEmitter(db, clock=clock)
        self.scheduling_engine = SchedulingEngineService(db, clock=clock)

    async def create_appointment(
        self, appointment_data: AppointmentCreate, actor: Actor
    ) -> Appointment:
        """Book a new appointment for the acting subject in Pending state."""
        self._require_role(actor, ActorRole.SUBJECT, "book an appointment")

        start = appointment_data.scheduled_start
        async with self.lock(appointment_data.provider_id, start.date()):
            async with self._unit_of_work():
                appointment = await self._book(
                    provider_id=appointment_data.provider_id,
                    subject_id=actor.id,
                    start=start,
                    actor=actor,
                    purpose=appointment_data.purpose,
                    share_medical_records=appointment_data.share_medical_records,
                    is_remote=appointment_data.is_remote,
                )

        logger.info(
            f"Appointment {appointment.uuid} requested by subject {actor.id} "
            f"with provider {appointment.provider_id} at {start}"
        )
        await self.emitter.dispatch_pending()
        return appointment

    async def decide(
        self, appointment_uuid: Union[str, UUID], decision: ProviderDecision, actor: Actor
    ) -> Appointment:
        """Provider confirms or rejects a pending request."""
        self._require_role(actor, ActorRole.PROVIDER, "decide on an appointment")

        async with self._unit_of_work():
            appointment = await self._load_for_update(appointment_uuid)
            self._require_participant(appointment, actor)
            self._require_status(appointment, [AppointmentStatus.PENDING], "decide on")

            if decision.decision == DecisionSchema.CONFIRMED:
                target, kind = AppointmentStatus.CONFIRMED, TransitionKind.CONFIRMED
            else:
                target, kind = AppointmentStatus.CANCELLED, TransitionKind.CANCELLED

            self._transition(appointment, target, "decide on")
            appointment.append_provider_note(decision.note)
            self.emitter.record(appointment, kind, actor, note=decision.note)

        logger.info(f"Appointment {appointment.uuid} {target.value} by provider {actor.id}")
        await self.emitter.dispatch_pending()
        return appointment

    async def propose_reschedule(
        self,
        appointment_uuid: Union[str, UUID],
        proposal: RescheduleProposal,
        actor: Actor,
    ) -> Appointment:
        """
        Provider proposes a new start time.

        The current slot stays occupied until the subject accepts. A second
        proposal replaces the first. The proposed slot is validated against
        every other booking and proposal, ignoring this appointment's own.
        """
        self._require_role(actor, ActorRole.PROVIDER, "reschedule an appointment")

        async with self._unit_of_work():
            appointment = await self._load_for_update(appointment_uuid)
            self._require_participant(appointment, actor)
            self._require_status(
                appointment,
                [AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED],
                "reschedule",
            )

            async with self.lock(appointment.provider_id, proposal.new_start.date()):
                await self.scheduling_engine.ensure_bookable(
                    appointment.provider_id,
                    proposal.new_start,
                    exclude_appointment_id=appointment.id,
                    duration=timedelta(minutes=appointment.duration_minutes),
                )
                appointment.set_proposal(proposal.new_start, self.clock(), proposal.note)
                self._transition(appointment, AppointmentStatus.RESCHEDULED, "reschedule")
                self.emitter.record(
                    appointment, TransitionKind.RESCHEDULED, actor, note=proposal.note
                )
                await self.db.commit()

        logger.info(
            f"Appointment {appointment.uuid} reschedule proposed for {proposal.new_start}"
        )
        await self.emitter.dispatch_pending()
        return appointment

    async def respond_to_reschedule(
        self,
        appointment_uuid: Union[str, UUID],
        response: RescheduleResponse,
        actor: Actor,
    ) -> Appointment:
        """
        Subject accepts or declines the outstanding proposal.

        Accepting re-validates the proposed slot under the booking lock and
        moves the appointment there. Declining cancels the appointment; it
        never reverts to the old time. If re-validation fails the appointment
        stays Rescheduled.
        """
        self._require_role(actor, ActorRole.SUBJECT, "respond to a reschedule")

        async with self._unit_of_work():
            appointment = await self._load_for_update(appointment_uuid)
            self._require_participant(appointment, actor)
            self._require_status(
                appointment, [AppointmentStatus.RESCHEDULED], "respond to a reschedule of"
            )

            if response.accept:
                new_start = appointment.proposed_start
                async with self.lock(appointment.provider_id, new_start.date()):
                    await self.scheduling_engine.ensure_bookable(
                        appointment.provider_id,
                        new_start,
                        exclude_appointment_id=appointment.id,
                        duration=timedelta(minutes=appointment.duration_minutes),
                    )
                    previous_start = appointment.scheduled_start
                    appointment.move_to(new_start)
                    appointment.clear_proposal()
                    self._transition(
                        appointment, AppointmentStatus.CONFIRMED, "respond to a reschedule of"
                    )
                    self.emitter.record(
                        appointment,
                        TransitionKind.RESCHEDULE_CONFIRMED,
                        actor,
                        previous_start=previous_start.isoformat(),
                    )
                    await self.db.commit()
            else:
                appointment.clear_proposal()
                self._transition(
                    appointment, AppointmentStatus.CANCELLED, "respond to a reschedule of"
                )
                self.emitter.record(appointment, TransitionKind.RESCHEDULE_DECLINED, actor)

        logger.info(
            f"Appointment {appointment.uuid} reschedule "
            f"{'accepted' if response.accept else 'declined'} by subject {actor.id}"
        )
        await self.emitter.dispatch_pending()
        return appointment

    async def complete(
        self,
        appointment_uuid: Union[str, UUID],
        completion: AppointmentCompletion,
        actor: Actor,
    ) -> Tuple[Appointment, Optional[Appointment]]:
        """
        Provider completes a confirmed appointment.

        Notes are appended under a completion heading. A follow-up start books
        a new Pending follow-up through the regular booking checks, in the same
        transaction: if the follow-up is rejected nothing is completed.
        """
        self._require_role(actor, ActorRole.PROVIDER, "complete an appointment")

        follow_up = None
        async with self._unit_of_work():
            appointment = await self._load_for_update(appointment_uuid)
            self._require_participant(appointment, actor)
            self._require_status(appointment, [AppointmentStatus.CONFIRMED], "complete")

            appointment.append_provider_note(completion.notes, heading=COMPLETION_NOTES_HEADING)
            self._transition(appointment, AppointmentStatus.COMPLETED, "complete")
            self.emitter.record(appointment, TransitionKind.COMPLETED, actor)

            if completion.follow_up_start is not None:
                start = completion.follow_up_start
                async with self.lock(appointment.provider_id, start.date()):
                    follow_up = await self._book(
                        provider_id=appointment.provider_id,
                        subject_id=appointment.subject_id,
                        start=start,
                        actor=actor,
                        purpose=completion.follow_up_purpose or appointment.purpose,
                        share_medical_records=appointment.share_medical_records,
                        is_remote=appointment.is_remote,
                        appointment_type=AppointmentType.FOLLOW_UP,
                        follow_up_of=appointment,
                    )
                    await self.db.commit()

        logger.info(
            f"Appointment {appointment.uuid} completed by provider {actor.id}"
            + (f", follow-up {follow_up.uuid} at {follow_up.scheduled_start}" if follow_up else "")
        )
        await self.emitter.dispatch_pending()
        return appointment, follow_up

    async def cancel(
        self,
        appointment_uuid: Union[str, UUID],
        cancellation: AppointmentCancel,
        actor: Actor,
    ) -> Appointment:
        """Provider cancels a confirmed or rescheduled appointment."""
        self._require_role(actor, ActorRole.PROVIDER, "cancel an appointment")

        async with self._unit_of_work():
            appointment = await self._load_for_update(appointment_uuid)
            self._require_participant(appointment, actor)
            self._require_status(
                appointment,
                [AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED],
                "cancel",
            )

            appointment.clear_proposal()
            self._transition(appointment, AppointmentStatus.CANCELLED, "cancel")
            appointment.append_provider_note(cancellation.note)
            self.emitter.record(
                appointment, TransitionKind.CANCELLED, actor, note=cancellation.note
            )

        logger.info(f"Appointment {appointment.uuid} cancelled by provider {actor.id}")
        await self.emitter.dispatch_pending()
        return appointment

    async def get_appointment(
        self, appointment_uuid: Union[str, UUID], actor: Actor
    ) -> Appointment:
        appointment = await self._load(appointment_uuid)
        if actor.role != ActorRole.SYSTEM:
            self._require_participant(appointment, actor)
        return appointment

    async def list_appointments(
        self, actor: Actor, filters: AppointmentFilters
    ) -> Tuple[List[Appointment], int]:
        """Appointments of the acting subject or provider, paginated."""
        query = select(Appointment)
        if actor.role == ActorRole.SUBJECT:
            query = query.where(Appointment.subject_id == actor.id)
        elif actor.role == ActorRole.PROVIDER:
            query = query.where(Appointment.provider_id == actor.id)
        else:
            raise NotAuthorized("Only participants can list appointments")

        if filters.status:
            query = query.where(Appointment.status == filters.status.value)
        if filters.start_date:
            query = query.where(Appointment.scheduled_start >= filters.start_date)
        if filters.end_date:
            query = query.where(Appointment.scheduled_start <= filters.end_date)

        count_query = select(func.count()).select_from(query.subquery())
        total_count = (await self.db.execute(count_query)).scalar()

        if filters.sort_order == "desc":
            query = query.order_by(Appointment.scheduled_start.desc(), Appointment.id.desc())
        else:
            query = query.order_by(Appointment.scheduled_start.asc(), Appointment.id.asc())

        offset = (filters.page - 1) * filters.page_size
        query = query.offset(offset).limit(filters.page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total_count

    # Helper methods
    async def _book(
        self,
        provider_id: int,
        subject_id: int,
        start: datetime,
        actor: Actor,
        purpose: Optional[str] = None,
        share_medical_records: bool = False,
        is_remote: bool = False,
        appointment_type: AppointmentType = AppointmentType.CONSULTATION,
        follow_up_of: Optional[Appointment] = None,
    ) -> Appointment:
        """Validate and persist a Pending appointment. Caller holds the lock."""
        provider = await self.scheduling_engine.directory.get_provider(provider_id)
        if is_remote and not provider.supports_remote:
            raise NotAuthorized(
                f"Provider {provider_id} does not offer remote appointments"
            )

        schedule = await self.scheduling_engine.ensure_bookable(provider_id, start)

        appointment = Appointment(
            provider_id=provider_id,
            subject_id=subject_id,
            booked_by_role=actor.role.value,
            scheduled_start=start,
            scheduled_end=start + schedule.granularity,
            duration_minutes=schedule.slot_duration_minutes,
            appointment_type=appointment_type.value,
            purpose=purpose,
            share_medical_records=share_medical_records,
            is_remote=is_remote,
            status=AppointmentStatus.PENDING.value,
            status_changed_at=self.clock(),
            follow_up_of_id=follow_up_of.id if follow_up_of else None,
        )
        self.db.add(appointment)
        await self.db.flush()

        self.emitter.record(
            appointment,
            TransitionKind.REQUESTED,
            actor,
            follow_up_of=str(follow_up_of.uuid) if follow_up_of else None,
        )
        return appointment

    def _unit_of_work(self) -> "_UnitOfWork":
        return _UnitOfWork(self.db, self.emitter)

    async def _load(self, appointment_uuid: Union[str, UUID], for_update: bool = False) -> Appointment:
        try:
            key = (
                appointment_uuid
                if isinstance(appointment_uuid, UUID)
                else UUID(str(appointment_uuid))
            )
        except ValueError:
            raise NotFound(f"Appointment {appointment_uuid} not found")

        query = select(Appointment).where(Appointment.uuid == key)
        if for_update:
            # Fresh row under a row lock; the status check below is the
            # compare half of compare-and-set.
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query)
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFound(f"Appointment {appointment_uuid} not found")
        return appointment

    async def _load_for_update(self, appointment_uuid: Union[str, UUID]) -> Appointment:
        return await self._load(appointment_uuid, for_update=True)

    def _require_role(self, actor: Actor, role: ActorRole, action: str) -> None:
        if actor.role != role or actor.id is None:
            raise NotAuthorized(f"Only the {role.value} can {action}")

    def _require_participant(self, appointment: Appointment, actor: Actor) -> None:
        if actor.role == ActorRole.SUBJECT and actor.id == appointment.subject_id:
            return
        if actor.role == ActorRole.PROVIDER and actor.id == appointment.provider_id:
            return
        raise NotAuthorized("Actor is not a participant of this appointment")

    def _require_status(
        self,
        appointment: Appointment,
        expected: Iterable[AppointmentStatus],
        action: str,
    ) -> None:
        if appointment.status not in [s.value for s in expected]:
            raise InvalidTransition(appointment.status, action)

    def _transition(
        self, appointment: Appointment, target: AppointmentStatus, action: str
    ) -> None:
        if not appointment.transition_to(target, self.clock()):
            raise InvalidTransition(appointment.status, action)


class _UnitOfWork:
    """Commits on success, rolls back and drops recorded events on failure."""

    def __init__(self, db: AsyncSession, emitter: AppointmentEventEmitter):
        self.db = db
        self.emitter = emitter

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.db.commit()
            return False
        await self.db.rollback()
        self.emitter.discard_pending()
        return False
