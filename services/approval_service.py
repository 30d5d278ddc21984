"""
Approval workflow: turns a transport request into a subscription.

approve() runs as one transaction:
1. request must be pending or waitlisted
2. the route row is locked before any capacity or subscription read
3. student must not already hold an active subscription for the term
4. placement is resolved and route + bus capacity re-checked (authoritative)
5. the seat, if any, is claimed through the seat allocator
6. the subscription is created
7. the request is marked approved
Any failure rolls the whole transaction back; nothing partial is committed.

bulk_approve() gives each request its own transaction and reports a per-request
outcome: one full route or taken seat does not hold back the rest.
"""
import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.errors import AlreadySubscribed, InvalidRequestState, InvariantViolation, NotFound, RouteFull, TransportError, ValidationError
from models.db_models import Bus, TransportRequest, TransportSubscription
from models.events import TransportEvent
from models.status import RequestStatus
from services.capacity_service import CapacityService
from services.request_service import RequestService
from services.subscription_service import SubscriptionService
from services.unit_of_work import record_event, unit_of_work

logger = logging.getLogger(__name__)

APPROVABLE_STATUSES = (RequestStatus.PENDING.value, RequestStatus.WAITLISTED.value)


class ApprovalItem(BaseModel):
    request_id: int
    bus_id: Optional[int] = None
    seat_label: Optional[str] = None


class ApprovalOutcome(BaseModel):
    request_id: int
    ok: bool
    subscription_id: Optional[int] = None
    bus_id: Optional[int] = None
    seat_label: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class ApprovalService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.capacity = CapacityService(session)
        self.requests = RequestService(session)
        self.subscriptions = SubscriptionService(session)

    async def approve(
        self,
        request_id: int,
        bus_id: Optional[int] = None,
        seat_label: Optional[str] = None,
        actor: str = "operator",
    ) -> TransportSubscription:
        """
        Approve one request. Without an explicit bus the student's preferred
        bus/seat is used, otherwise the first route bus with room (no seat).
        """
        async with unit_of_work(self.session):
            request = await self.requests.get_request(request_id, lock=True)
            if request.status not in APPROVABLE_STATUSES:
                raise InvalidRequestState(
                    f"Request {request_id} is {request.status} and cannot be approved",
                    {"request_id": request_id, "status": request.status},
                )

            # the route lock must precede every plain read: under REPEATABLE READ
            # the first non-locking read fixes the snapshot the counts see
            await self.capacity.get_route(request.route_id, lock=True)

            if await self.subscriptions.find_active(request.student_id, request.term_id) is not None:
                raise AlreadySubscribed(
                    "Student already has an active transport subscription for this term",
                    {"student_id": request.student_id, "term_id": request.term_id},
                )

            bus, seat = await self._resolve_placement(request, bus_id, seat_label)
            await self._check_capacity(request, bus)

            subscription = await self.subscriptions.create_subscription(request, bus, seat)
            await self.requests.mark_approved(request, actor)

            record_event(self.session, TransportEvent(
                event_type="request.approved",
                student_id=request.student_id,
                request_id=request.id,
                subscription_id=subscription.id,
                term_id=request.term_id,
                outcome=RequestStatus.APPROVED.value,
            ))
        logger.info(
            "Request %s approved by %s: subscription=%s bus=%s seat=%s",
            request_id, actor, subscription.id, subscription.assigned_bus_id, subscription.seat_label,
        )
        return subscription

    async def bulk_approve(self, items: List[ApprovalItem], actor: str = "operator") -> List[ApprovalOutcome]:
        outcomes = []
        for item in items:
            outcomes.append(await self._approve_one(item, actor))
        approved = sum(1 for o in outcomes if o.ok)
        logger.info("Bulk approval by %s: %s/%s approved", actor, approved, len(outcomes))
        return outcomes

    async def promote_next_waitlisted(self, route_id: int, term_id: str, actor: str = "operator") -> TransportSubscription:
        """
        Operator-initiated: approve the oldest waitlisted request on the route
        without a fixed seat. Cancellations never promote automatically.
        """
        async with unit_of_work(self.session):
            await self.capacity.get_route(route_id, lock=True)
            result = await self.session.execute(
                select(TransportRequest.id)
                .where(TransportRequest.route_id == route_id)
                .where(TransportRequest.term_id == term_id)
                .where(TransportRequest.status == RequestStatus.WAITLISTED.value)
                .order_by(TransportRequest.requested_at, TransportRequest.id)
                .limit(1)
            )
            next_id = result.scalar_one_or_none()
            if next_id is None:
                raise NotFound("No waitlisted requests for this route and term", {"route_id": route_id, "term_id": term_id})
            request = await self.requests.get_request(next_id, lock=True)
            bus = await self._first_bus_with_room(request)
            return await self.approve(next_id, bus_id=bus.id, seat_label=None, actor=actor)

    # ------------------------------------------------------------------ helpers

    async def _approve_one(self, item: ApprovalItem, actor: str) -> ApprovalOutcome:
        try:
            subscription = await self.approve(item.request_id, item.bus_id, item.seat_label, actor=actor)
        except InvariantViolation as e:
            logger.critical("Invariant violation approving request %s: %s", item.request_id, e.message)
            return ApprovalOutcome(request_id=item.request_id, ok=False, error_code=e.code, message=e.message)
        except TransportError as e:
            return ApprovalOutcome(request_id=item.request_id, ok=False, error_code=e.code, message=e.message)
        except SQLAlchemyError as e:
            logger.error("Persistence failure approving request %s: %s", item.request_id, e)
            return ApprovalOutcome(
                request_id=item.request_id, ok=False, error_code="persistence_error",
                message="Storage unavailable, retry this request",
            )
        return ApprovalOutcome(
            request_id=item.request_id,
            ok=True,
            subscription_id=subscription.id,
            bus_id=subscription.assigned_bus_id,
            seat_label=subscription.seat_label,
        )

    async def _resolve_placement(
        self,
        request: TransportRequest,
        bus_id: Optional[int],
        seat_label: Optional[str],
    ) -> Tuple[Bus, Optional[str]]:
        if bus_id is None and request.preferred_bus_id is not None:
            bus_id, seat_label = request.preferred_bus_id, seat_label or request.preferred_seat_label
        if bus_id is None:
            if seat_label:
                raise ValidationError("A seat can only be assigned together with a bus")
            return await self._first_bus_with_room(request), None

        bus = await self.capacity.get_bus(bus_id)
        if not bus.is_active:
            raise ValidationError(f"Bus {bus.bus_number} is not in service", {"bus_id": bus_id})
        if not await self.capacity.bus_serves_route(bus_id, request.route_id):
            raise ValidationError(
                f"Bus {bus.bus_number} does not serve the requested route",
                {"bus_id": bus_id, "route_id": request.route_id},
            )
        return bus, seat_label or None

    async def _first_bus_with_room(self, request: TransportRequest) -> Bus:
        for bus in await self.capacity.route_buses(request.route_id):
            if await self.capacity.count_active_on_bus(bus.id, request.term_id) < bus.capacity:
                return bus
        raise RouteFull("No bus on this route has a free seat", {"route_id": request.route_id, "term_id": request.term_id})

    async def _check_capacity(self, request: TransportRequest, bus: Bus) -> None:
        availability = await self.capacity.route_availability(request.route_id, request.term_id)
        if availability.is_full:
            logger.warning("Approval of request %s refused: route %s full", request.id, request.route_id)
            raise RouteFull("This route is full for the term", availability.model_dump())
        if await self.capacity.count_active_on_bus(bus.id, request.term_id) >= bus.capacity:
            logger.warning("Approval of request %s refused: bus %s full", request.id, bus.id)
            raise RouteFull(
                f"Bus {bus.bus_number} is at full capacity; choose another bus",
                {"route_id": request.route_id, "bus_id": bus.id},
            )
