from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from services.approval_service import ApprovalItem


class CreateRequestPayload(BaseModel):
    term_id: str = Field(..., min_length=1)
    route_id: int
    stop_id: int
    preferred_bus_id: Optional[int] = None
    preferred_seat_label: Optional[str] = Field(None, max_length=10)
    notes: Optional[str] = None

class ApprovePayload(BaseModel):
    bus_id: Optional[int] = None
    seat_label: Optional[str] = Field(None, max_length=10)

class RejectPayload(BaseModel):
    # emptiness is checked by the service so the error code stays validation_error
    reason: str = ""

class BulkApprovePayload(BaseModel):
    items: List[ApprovalItem] = Field(..., min_length=1)

class CancelSubscriptionPayload(BaseModel):
    reason: str = ""


class RequestOut(BaseModel):
    id: int
    student_id: str
    term_id: str
    route_id: int
    stop_id: int
    preferred_bus_id: Optional[int] = None
    preferred_seat_label: Optional[str] = None
    status: str
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    requested_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    class Config:
        from_attributes = True

class SubscriptionOut(BaseModel):
    id: int
    request_id: int
    student_id: str
    term_id: str
    route_id: int
    stop_id: int
    assigned_bus_id: int
    seat_label: Optional[str] = None
    status: str
    started_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True


def request_out(request) -> dict:
    return RequestOut.model_validate(request).model_dump(mode="json")

def subscription_out(subscription) -> dict:
    return SubscriptionOut.model_validate(subscription).model_dump(mode="json")
