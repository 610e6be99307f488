import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class BlockedTime(Base):
    """A range of a provider's day that cannot be booked (calls, errands, ...)."""

    __tablename__ = "blocked_times"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)

    # Blocked period, provider local clock
    blocked_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_blocked_times_provider_date", "provider_id", "blocked_date"),
        CheckConstraint("start_time < end_time", name="check_blocked_end_after_start"),
    )

    __mapper_args__ = {"eager_defaults": True}

    provider = relationship("Provider", back_populates="blocked_times")

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.blocked_date, self.start_time)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.blocked_date, self.end_time)

    def __repr__(self):
        return (
            f"<BlockedTime(id={self.id}, provider_id={self.provider_id}, "
            f"{self.blocked_date} {self.start_time}-{self.end_time})>"
        )
