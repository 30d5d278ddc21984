# api/routes_operator.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Principal, require_operator
from core.db import get_db_session
from core.response import ok
from models.schemas import (
    ApprovePayload, BulkApprovePayload, CancelSubscriptionPayload, RejectPayload,
    request_out, subscription_out,
)
from services.approval_service import ApprovalService
from services.notification_service import notification_service
from services.request_service import RequestService
from services.subscription_service import SubscriptionService

router = APIRouter()


@router.get("/requests")
async def list_requests(
    term_id: Optional[str] = None,
    status: Optional[str] = None,
    route_id: Optional[int] = None,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    """Review queue, oldest first."""
    requests = await RequestService(session).list_requests(term_id=term_id, status=status, route_id=route_id)
    return ok([request_out(r) for r in requests])


@router.post("/requests/bulk-approve")
async def bulk_approve(
    payload: BulkApprovePayload,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Approve many requests at once. Each request commits on its own, so the
    response lists one outcome per request rather than failing as a whole.
    """
    outcomes = await ApprovalService(session).bulk_approve(payload.items, actor=operator.user_id)
    return ok({
        "approved": sum(1 for o in outcomes if o.ok),
        "failed": sum(1 for o in outcomes if not o.ok),
        "outcomes": [o.model_dump() for o in outcomes],
    })


@router.post("/requests/{request_id}/approve")
async def approve_request(
    request_id: int,
    payload: Optional[ApprovePayload] = None,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    payload = payload or ApprovePayload()
    subscription = await ApprovalService(session).approve(
        request_id, bus_id=payload.bus_id, seat_label=payload.seat_label, actor=operator.user_id
    )
    return ok(subscription_out(subscription))


@router.post("/requests/{request_id}/reject")
async def reject_request(
    request_id: int,
    payload: RejectPayload,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    request = await RequestService(session).reject(request_id, payload.reason, actor=operator.user_id)
    return ok(request_out(request))


@router.post("/requests/{request_id}/waitlist")
async def waitlist_request(
    request_id: int,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    request = await RequestService(session).waitlist(request_id, actor=operator.user_id)
    return ok(request_out(request))


@router.post("/routes/{route_id}/promote-waitlist")
async def promote_waitlist(
    route_id: int,
    term_id: str,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    """Approve the oldest waitlisted request on the route (no fixed seat)."""
    subscription = await ApprovalService(session).promote_next_waitlisted(route_id, term_id, actor=operator.user_id)
    return ok(subscription_out(subscription))


@router.get("/subscriptions")
async def list_subscriptions(
    term_id: Optional[str] = None,
    route_id: Optional[int] = None,
    bus_id: Optional[int] = None,
    status: Optional[str] = None,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    subscriptions = await SubscriptionService(session).list_subscriptions(
        term_id=term_id, route_id=route_id, bus_id=bus_id, status=status
    )
    return ok([subscription_out(s) for s in subscriptions])


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: int,
    payload: Optional[CancelSubscriptionPayload] = None,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    """Administrative cancellation; a reason is recommended but optional."""
    subscription = await SubscriptionService(session).cancel(
        subscription_id, actor=operator.user_id, reason=payload.reason if payload else ""
    )
    return ok(subscription_out(subscription))


@router.get("/routes/{route_id}/manifest")
async def route_manifest(
    route_id: int,
    term_id: str,
    operator: Principal = Depends(require_operator),
    session: AsyncSession = Depends(get_db_session),
):
    return ok(await SubscriptionService(session).manifest(route_id, term_id))


@router.get("/events/recent")
async def recent_events(operator: Principal = Depends(require_operator)):
    """Recently dispatched transport events from this process."""
    return ok(notification_service.recent_events())
