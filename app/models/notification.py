import enum
import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.sql import func

from app.core.database import Base


class TransitionKind(enum.Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    RESCHEDULE_CONFIRMED = "reschedule_confirmed"
    RESCHEDULE_DECLINED = "reschedule_declined"
    COMPLETED = "completed"
    REMINDER_24H = "reminder_24h"


class AppointmentEvent(Base):
    """Outbox row for one accepted appointment transition.

    Written in the same transaction as the state change; handed to the
    notification queue after commit.
    """

    __tablename__ = "appointment_events"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True
    )
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    transition_kind = Column(String(40), nullable=False)

    actor_role = Column(String(20), nullable=False)
    actor_id = Column(Integer, nullable=True)
    recipient_role = Column(String(20), nullable=False)
    recipient_id = Column(Integer, nullable=False)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    # Set once the event was handed to the notification queue
    enqueued_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_appointment_events_enqueued", "enqueued_at"),)
    __mapper_args__ = {"eager_defaults": True}

    def to_message(self) -> dict:
        """Wire form handed to the notification collaborator."""
        from app.schemas.appointment import AppointmentEventMessage, EventActor

        return AppointmentEventMessage(
            event_id=self.uuid,
            appointment_id=self.appointment_id,
            transition_kind=self.transition_kind,
            actor=EventActor(role=self.actor_role, id=self.actor_id),
            recipient=EventActor(role=self.recipient_role, id=self.recipient_id),
            timestamp=self.occurred_at,
            payload=self.payload or {},
        ).model_dump(mode="json")

    def __repr__(self):
        return (
            f"<AppointmentEvent(id={self.id}, appointment_id={self.appointment_id}, "
            f"kind='{self.transition_kind}')>"
        )
