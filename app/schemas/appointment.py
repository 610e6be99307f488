from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, Field, model_validator
from enum import Enum


class AppointmentStatusSchema(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AppointmentTypeSchema(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"


class DecisionSchema(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Request schemas
class AppointmentCreate(BaseModel):
    provider_id: int
    scheduled_start: datetime = Field(
        ..., description="Start in the provider's local clock, timezone-naive"
    )
    purpose: Optional[str] = Field(None, max_length=2000)
    share_medical_records: bool = False
    is_remote: bool = False

    @model_validator(mode="after")
    def strip_timezone(self):
        # Starts live in the provider's wall clock; an explicit offset is
        # dropped rather than converted.
        if self.scheduled_start.tzinfo is not None:
            self.scheduled_start = self.scheduled_start.replace(tzinfo=None)
        return self


class ProviderDecision(BaseModel):
    decision: DecisionSchema
    note: Optional[str] = Field(None, max_length=2000)


class RescheduleProposal(BaseModel):
    new_start: datetime
    note: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def strip_timezone(self):
        if self.new_start.tzinfo is not None:
            self.new_start = self.new_start.replace(tzinfo=None)
        return self


class RescheduleResponse(BaseModel):
    accept: bool


class AppointmentCompletion(BaseModel):
    notes: Optional[str] = Field(None, max_length=5000)
    follow_up_start: Optional[datetime] = None
    follow_up_purpose: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def strip_timezone(self):
        if self.follow_up_start is not None and self.follow_up_start.tzinfo is not None:
            self.follow_up_start = self.follow_up_start.replace(tzinfo=None)
        return self


class AppointmentCancel(BaseModel):
    note: Optional[str] = Field(None, max_length=2000)


# Response schemas
class Appointment(BaseModel):
    id: int
    uuid: UUID
    provider_id: int
    subject_id: int
    booked_by_role: str
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    appointment_type: AppointmentTypeSchema
    purpose: Optional[str] = None
    share_medical_records: bool
    is_remote: bool
    status: AppointmentStatusSchema
    previous_status: Optional[AppointmentStatusSchema] = None
    status_changed_at: Optional[datetime] = None
    provider_note: Optional[str] = None
    proposed_start: Optional[datetime] = None
    proposed_end: Optional[datetime] = None
    proposed_at: Optional[datetime] = None
    proposal_note: Optional[str] = None
    reschedule_count: int = 0
    follow_up_of_id: Optional[int] = None
    reminder_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CompletionResult(BaseModel):
    appointment: Appointment
    follow_up: Optional[Appointment] = None


class AppointmentList(BaseModel):
    appointments: List[Appointment]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class AppointmentFilters(BaseModel):
    status: Optional[AppointmentStatusSchema] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)
    sort_order: Literal["asc", "desc"] = "asc"


# Event message handed to the notification collaborator
class EventActor(BaseModel):
    role: str
    id: Optional[int] = None


class AppointmentEventMessage(BaseModel):
    event_id: UUID
    appointment_id: int
    transition_kind: str
    actor: EventActor
    recipient: EventActor
    timestamp: datetime
    payload: dict = Field(default_factory=dict)
