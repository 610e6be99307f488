from datetime import date, datetime, time
from typing import List, Optional
from uuid import UUID
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class WeekDayName(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class DayScheduleEntry(BaseModel):
    weekday: WeekDayName
    enabled: bool = True
    open_time: Optional[time] = None
    close_time: Optional[time] = None

    @field_validator("weekday", mode="before")
    @classmethod
    def normalize_weekday(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_window(self):
        if self.enabled:
            if self.open_time is None or self.close_time is None:
                raise ValueError(
                    f"{self.weekday.value}: an enabled day needs open_time and close_time"
                )
            if self.open_time >= self.close_time:
                raise ValueError(
                    f"{self.weekday.value}: open_time must be before close_time"
                )
        return self


class ScheduleUpdate(BaseModel):
    """Replaces a provider's per-weekday availability.

    Weekdays left out of ``days`` are not configured and resolve closed.
    """

    # None leaves the per-weekday entries untouched; an empty list removes them
    # and the provider falls back to its legacy flat window.
    days: Optional[List[DayScheduleEntry]] = Field(None, max_length=7)
    slot_duration_minutes: Optional[int] = Field(None, gt=0, le=1440)
    timezone: Optional[str] = Field(None, max_length=64)
    supports_remote: Optional[bool] = None

    @field_validator("days")
    @classmethod
    def validate_unique_weekdays(cls, v):
        if v is None:
            return v
        seen = set()
        for entry in v:
            if entry.weekday in seen:
                raise ValueError(f"Duplicate entry for {entry.weekday.value}")
            seen.add(entry.weekday)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class ProviderScheduleResponse(BaseModel):
    provider_id: int
    provider_uuid: UUID
    timezone: str
    slot_duration_minutes: int
    supports_remote: bool
    # "weekly" when per-weekday entries exist, otherwise "legacy"
    kind: str
    days: List[DayScheduleEntry] = Field(default_factory=list)
    legacy_open_time: Optional[time] = None
    legacy_close_time: Optional[time] = None
    legacy_available_days: List[WeekDayName] = Field(default_factory=list)


class BlockedTimeCreate(BaseModel):
    blocked_date: date
    start_time: time
    end_time: time
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class BlockedTime(BaseModel):
    id: int
    uuid: UUID
    provider_id: int
    blocked_date: date
    start_time: time
    end_time: time
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
