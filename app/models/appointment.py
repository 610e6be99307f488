from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Boolean,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


class AppointmentStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AppointmentType(enum.Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"


class ActorRole(enum.Enum):
    SUBJECT = "subject"
    PROVIDER = "provider"
    SYSTEM = "system"


# Source state -> reachable states. RESCHEDULED -> RESCHEDULED is a provider
# overwriting its own outstanding proposal.
ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
    ],
    AppointmentStatus.RESCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    ],
    AppointmentStatus.CANCELLED: [],  # Final state
    AppointmentStatus.COMPLETED: [],  # Final state
}

# Statuses whose interval still occupies the provider's calendar
OCCUPYING_STATUSES = [
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
]


class Appointment(Base):
    """Appointment between a subject and a provider, with its lifecycle state."""

    __tablename__ = "appointments"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(
        Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True
    )

    # Participants. The subject lives in the identity service; only its id is kept.
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    subject_id = Column(Integer, nullable=False, index=True)
    booked_by_role = Column(String(20), nullable=False, default=ActorRole.SUBJECT.value)

    # Scheduling details, provider local clock (timezone-naive)
    scheduled_start = Column(DateTime(timezone=False), nullable=False)
    scheduled_end = Column(DateTime(timezone=False), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Booking details
    appointment_type = Column(
        String(20), nullable=False, default=AppointmentType.CONSULTATION.value
    )
    purpose = Column(Text, nullable=True)
    share_medical_records = Column(Boolean, default=False, nullable=False)
    is_remote = Column(Boolean, default=False, nullable=False)

    # Status management
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value, index=True)
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), server_default=func.now())

    # Provider decision / visit notes
    provider_note = Column(Text, nullable=True)

    # Outstanding reschedule proposal
    proposed_start = Column(DateTime(timezone=False), nullable=True)
    proposed_end = Column(DateTime(timezone=False), nullable=True)
    proposed_at = Column(DateTime(timezone=True), nullable=True)
    proposal_note = Column(Text, nullable=True)
    reschedule_count = Column(Integer, default=0, nullable=False)

    # Follow-up chain
    follow_up_of_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    # Reminders
    reminder_sent = Column(Boolean, default=False, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Constraints
    __table_args__ = (
        Index("ix_appointments_provider_start", "provider_id", "scheduled_start"),
        CheckConstraint(
            "scheduled_end > scheduled_start",
            name="check_end_after_start"
        ),
        CheckConstraint(
            "duration_minutes > 0",
            name="check_positive_duration"
        ),
        CheckConstraint(
            "reschedule_count >= 0",
            name="check_non_negative_reschedule_count"
        ),
    )

    # Server-side timestamps are fetched with the write, not lazily after commit
    __mapper_args__ = {"eager_defaults": True}

    # Relationships
    provider = relationship("Provider")
    follow_up_of = relationship("Appointment", remote_side=[id])

    # Status transition methods
    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        """Check if appointment can transition to the new status."""
        current = AppointmentStatus(self.status)
        return new_status in ALLOWED_TRANSITIONS.get(current, [])

    def transition_to(
        self, new_status: AppointmentStatus, changed_at: Optional[datetime] = None
    ) -> bool:
        """Move to ``new_status`` if the transition table allows it."""
        if not self.can_transition_to(new_status):
            return False

        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = changed_at or datetime.now(timezone.utc)
        return True

    def set_proposal(
        self,
        start: datetime,
        proposed_at: datetime,
        note: Optional[str] = None,
    ) -> None:
        """Store (or overwrite) the outstanding reschedule proposal."""
        self.proposed_start = start
        self.proposed_end = start + timedelta(minutes=self.duration_minutes)
        self.proposed_at = proposed_at
        self.proposal_note = note

    def clear_proposal(self) -> None:
        self.proposed_start = None
        self.proposed_end = None
        self.proposed_at = None
        self.proposal_note = None

    def move_to(self, start: datetime) -> None:
        """Commit a new start time, keeping the duration."""
        self.scheduled_start = start
        self.scheduled_end = start + timedelta(minutes=self.duration_minutes)
        self.reschedule_count = (self.reschedule_count or 0) + 1
        self.reminder_sent = False

    def append_provider_note(self, note: Optional[str], heading: Optional[str] = None) -> None:
        """Append ``note`` to the provider note, under an optional heading."""
        text = note.strip() if note else ""
        if not text:
            return
        block = f"--- {heading} ---\n{text}" if heading else text
        self.provider_note = (
            f"{self.provider_note}\n\n{block}" if self.provider_note else block
        )

    @property
    def has_pending_proposal(self) -> bool:
        return self.proposed_start is not None

    @property
    def is_active(self) -> bool:
        """Check if appointment still occupies the provider's calendar."""
        return self.status in [s.value for s in OCCUPYING_STATUSES]

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[AppointmentStatus(self.status)]

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, status='{self.status}', "
            f"start='{self.scheduled_start}', "
            f"subject_id={self.subject_id}, provider_id={self.provider_id})>"
        )
