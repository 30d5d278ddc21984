"""
Transport domain errors.

Each error carries a stable `code` (rendered into the error envelope) and the
HTTP status the API layer should answer with. Capacity errors (`route_full`,
`seat_already_taken`) are deliberately distinct so clients can tell
"choose another seat" apart from "this route is full".
"""
from typing import Any, Dict, Optional


class TransportError(Exception):
    code = "transport_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TransportError):
    """Malformed input: empty rejection reason, unknown seat label, stop not on route."""
    code = "validation_error"
    status_code = 422


class NotFound(TransportError):
    code = "not_found"
    status_code = 404


class AuthorizationError(TransportError):
    code = "forbidden"
    status_code = 403


class DuplicateActiveRequest(TransportError):
    code = "duplicate_active_request"
    status_code = 409


class AlreadySubscribed(TransportError):
    code = "already_subscribed"
    status_code = 409


class InvalidRequestState(TransportError):
    code = "invalid_request_state"
    status_code = 409


class RouteFull(TransportError):
    code = "route_full"
    status_code = 409


class SeatAlreadyTaken(TransportError):
    code = "seat_already_taken"
    status_code = 409


class InvariantViolation(TransportError):
    """A programming defect upstream, never bad user input."""
    code = "invariant_violation"
    status_code = 500
