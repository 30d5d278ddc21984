# models/status.py
from enum import Enum

from core.errors import ValidationError


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


# status -> statuses it may move to; anything absent is terminal
REQUEST_TRANSITIONS = {
    RequestStatus.PENDING: {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.WAITLISTED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.WAITLISTED: {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    },
}


def can_transition(current: str, target: str) -> bool:
    return RequestStatus(target) in REQUEST_TRANSITIONS.get(RequestStatus(current), set())


def parse_status(status_enum, value: str):
    """Status filters arrive as raw query strings; unknown values are a validation error."""
    try:
        return status_enum(value)
    except ValueError:
        raise ValidationError(
            f"Unknown status {value!r}",
            {"status": value, "allowed": [s.value for s in status_enum]},
        )
