import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Time,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Provider(Base):
    """Bookable provider with its availability configuration."""

    __tablename__ = "providers"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")

    # Slot granularity in minutes
    slot_duration_minutes = Column(Integer, nullable=False, default=30)

    # Legacy flat availability: one window plus a list of weekday names.
    # Only consulted when the provider has no per-weekday working hours.
    legacy_open_time = Column(Time, nullable=True)
    legacy_close_time = Column(Time, nullable=True)
    legacy_available_days = Column(JSON, nullable=False, default=list)

    # Remote (video) consultations
    supports_remote = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "slot_duration_minutes > 0 AND slot_duration_minutes <= 1440",
            name="check_slot_duration_range",
        ),
    )

    __mapper_args__ = {"eager_defaults": True}

    # Relationships
    working_hours = relationship(
        "WorkingHours", back_populates="provider", cascade="all, delete-orphan"
    )
    blocked_times = relationship(
        "BlockedTime", back_populates="provider", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return (
            f"<Provider(id={self.id}, name='{self.name}', "
            f"slot={self.slot_duration_minutes}m, tz={self.timezone})>"
        )
