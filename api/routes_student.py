# api/routes_student.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Principal, require_student
from core.db import get_db_session
from core.response import ok
from models.schemas import CancelSubscriptionPayload, CreateRequestPayload, request_out, subscription_out
from services.request_service import RequestService
from services.subscription_service import SubscriptionService

router = APIRouter()


@router.post("/requests", status_code=201)
async def create_request(
    payload: CreateRequestPayload,
    student: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    """Student signs up for a route for one term. Starts in `pending`."""
    request = await RequestService(session).create_request(
        student_id=student.user_id,
        term_id=payload.term_id,
        route_id=payload.route_id,
        stop_id=payload.stop_id,
        preferred_bus_id=payload.preferred_bus_id,
        preferred_seat_label=payload.preferred_seat_label,
        notes=payload.notes,
    )
    return ok(request_out(request))


@router.get("/requests")
async def my_requests(
    term_id: Optional[str] = None,
    student: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    requests = await RequestService(session).list_requests(term_id=term_id, student_id=student.user_id)
    return ok([request_out(r) for r in requests])


@router.post("/requests/{request_id}/cancel")
async def cancel_request(
    request_id: int,
    student: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    """Withdraw a pending or waitlisted request."""
    request = await RequestService(session).cancel_by_student(request_id, student_id=student.user_id)
    return ok(request_out(request))


@router.get("/subscriptions")
async def my_subscriptions(
    term_id: Optional[str] = None,
    student: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    subscriptions = await SubscriptionService(session).list_subscriptions(term_id=term_id, student_id=student.user_id)
    return ok([subscription_out(s) for s in subscriptions])


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: int,
    payload: Optional[CancelSubscriptionPayload] = None,
    student: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
):
    """Student gives up their seat; it is free for others immediately."""
    subscription = await SubscriptionService(session).cancel(
        subscription_id,
        actor=student.user_id,
        reason=payload.reason if payload else "",
        student_id=student.user_id,
    )
    return ok(subscription_out(subscription))
