"""
Typed failures raised by the scheduling engine.

Every failure a caller can observe maps to one subclass of SchedulingError.
The API layer renders them with a single exception handler; services never
return silent no-ops.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for engine failures."""

    code = "scheduling_error"
    status_code = 400
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return cls.code.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class PastDateTime(SchedulingError):
    """Raised when the requested start is not strictly after the authoritative now."""

    code = "past_date_time"
    status_code = 422
    retryable = True


class ProviderClosed(SchedulingError):
    """Raised when the provider does not work at the requested time."""

    code = "provider_closed"
    status_code = 409
    retryable = True


class SlotTaken(SchedulingError):
    """Raised when the requested interval overlaps an occupied interval."""

    code = "slot_taken"
    status_code = 409
    retryable = True


class InvalidTransition(SchedulingError):
    """Raised when an appointment is not in the source state a transition needs."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, current_status: str, action: str):
        self.current_status = current_status
        self.action = action
        super().__init__(f"Cannot {action} an appointment in status '{current_status}'")


class NotAuthorized(SchedulingError):
    """Raised when the acting party may not perform the transition."""

    code = "not_authorized"
    status_code = 403


class NotFound(SchedulingError):
    """Raised when an appointment or provider does not exist."""

    code = "not_found"
    status_code = 404


class UpstreamUnavailable(SchedulingError):
    """Raised when the conflict set, schedule source or booking lock is unreachable."""

    code = "upstream_unavailable"
    status_code = 503
    retryable = True
