from datetime import date, datetime, time, timedelta
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator
from enum import Enum

from app.core.exceptions import PastDateTime, ProviderClosed, SlotTaken
from app.models.working_hours import WeekDay


class ClosedReason(str, Enum):
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"


class RejectionReason(str, Enum):
    PAST_DATE_TIME = "past_date_time"
    PROVIDER_CLOSED = "provider_closed"
    SLOT_TAKEN = "slot_taken"


class IntervalSource(str, Enum):
    APPOINTMENT = "appointment"
    PROPOSAL = "proposal"
    BLOCKED = "blocked"


# Resolved day: exactly one of these reaches the slot generator and validator
class OpenWindow(BaseModel):
    kind: Literal["open"] = "open"
    open_time: time
    close_time: time

    @model_validator(mode="after")
    def validate_window(self):
        if self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time")
        return self


class ClosedDay(BaseModel):
    kind: Literal["closed"] = "closed"
    reason: ClosedReason


# Schedule representations
class DayAvailabilityEntry(BaseModel):
    enabled: bool = True
    open_time: Optional[time] = None
    close_time: Optional[time] = None

    @model_validator(mode="after")
    def validate_enabled_window(self):
        if self.enabled:
            if self.open_time is None or self.close_time is None:
                raise ValueError("An enabled day needs open_time and close_time")
            if self.open_time >= self.close_time:
                raise ValueError("open_time must be before close_time")
        return self


class WeeklySchedule(BaseModel):
    kind: Literal["weekly"] = "weekly"
    days: Dict[WeekDay, DayAvailabilityEntry] = Field(default_factory=dict)


class LegacySchedule(BaseModel):
    kind: Literal["legacy"] = "legacy"
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    available_days: List[WeekDay] = Field(default_factory=list)


class ProviderSchedule(BaseModel):
    provider_id: int
    timezone: str = "UTC"
    slot_duration_minutes: int = Field(30, gt=0, le=1440)
    availability: Annotated[
        Union[WeeklySchedule, LegacySchedule], Field(discriminator="kind")
    ]

    @property
    def granularity(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)


# Conflict set member
class Interval(BaseModel):
    start: datetime
    end: datetime
    source: IntervalSource = IntervalSource.APPOINTMENT
    reference: Optional[str] = None

    @model_validator(mode="after")
    def validate_interval(self):
        if self.end <= self.start:
            raise ValueError("Interval end must be after start")
        return self


class Slot(BaseModel):
    date: date
    start_time: time
    end_time: time
    is_free: bool

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.date, self.start_time)


class SlotQueryResult(BaseModel):
    provider_id: int
    date: date
    is_open: bool
    closed_reason: Optional[ClosedReason] = None
    slot_duration_minutes: int
    slots: List[Slot] = Field(default_factory=list)
    # Set when the conflict source failed and every slot is shown as free.
    # Advisory only; booking re-validates against the real conflict set.
    degraded: bool = False
    degraded_reason: Optional[str] = None


class AvailableDaysResult(BaseModel):
    provider_id: int
    start_date: date
    end_date: date
    days: List[date] = Field(default_factory=list)


class BookingValidationRequest(BaseModel):
    provider_id: int
    scheduled_start: datetime


class BookingValidationResult(BaseModel):
    is_valid: bool
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "BookingValidationResult":
        return cls(is_valid=True)

    @classmethod
    def rejected(
        cls, reason: RejectionReason, message: str
    ) -> "BookingValidationResult":
        return cls(is_valid=False, reason=reason, message=message)

    def raise_for_rejection(self) -> None:
        """Raise the matching engine error when the candidate was rejected."""
        if self.is_valid:
            return
        error_cls = {
            RejectionReason.PAST_DATE_TIME: PastDateTime,
            RejectionReason.PROVIDER_CLOSED: ProviderClosed,
            RejectionReason.SLOT_TAKEN: SlotTaken,
        }[self.reason]
        raise error_cls(self.message)
