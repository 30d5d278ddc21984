# models/events.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TransportEvent(BaseModel):
    """
    Domain event emitted after a transport operation commits.

    event_type is one of: request.approved, request.rejected, request.waitlisted,
    request.cancelled, subscription.cancelled.
    """
    event_type: str
    student_id: str
    outcome: str
    request_id: Optional[int] = None
    subscription_id: Optional[int] = None
    term_id: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
