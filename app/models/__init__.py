# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    blocked_time,
    notification,
    provider,
    working_hours,
)

__all__ = [
    "appointment",
    "blocked_time",
    "notification",
    "provider",
    "working_hours",
]
