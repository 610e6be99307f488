import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class WeekDay(enum.Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def from_name(cls, name: str) -> "WeekDay":
        """Accept "MONDAY", "monday" or "Monday"."""
        return cls[name.strip().upper()]


class WorkingHours(Base):
    """Per-weekday working hours of a provider."""

    __tablename__ = "working_hours"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)

    # Schedule details
    weekday = Column(String(20), nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("provider_id", "weekday", name="uq_working_hours_provider_weekday"),
        CheckConstraint(
            "NOT is_enabled OR (start_time IS NOT NULL AND end_time IS NOT NULL "
            "AND start_time < end_time)",
            name="check_enabled_window",
        ),
    )

    __mapper_args__ = {"eager_defaults": True}

    provider = relationship("Provider", back_populates="working_hours")

    def __repr__(self):
        state = (
            f"{self.start_time}-{self.end_time}" if self.is_enabled else "disabled"
        )
        return (
            f"<WorkingHours(id={self.id}, provider_id={self.provider_id}, "
            f"{self.weekday}: {state})>"
        )
