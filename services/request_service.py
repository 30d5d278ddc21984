"""
Transport request lifecycle.

States: pending -> {approved, rejected, waitlisted, cancelled};
waitlisted -> {approved, rejected, cancelled}. Approved, rejected and cancelled
are terminal; a new cycle needs a new request. Approval itself lives in
services/approval_service.py because it also creates the subscription.

A student holds at most one live request per term. Rejected and cancelled
requests never block a new one; an approved request blocks until its
subscription is cancelled.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config.settings import settings
from core.errors import DuplicateActiveRequest, InvalidRequestState, NotFound, RouteFull, ValidationError
from models.db_models import Stop, TransportRequest
from models.events import TransportEvent
from models.seat_layout import SeatLayout
from models.status import RequestStatus, can_transition, parse_status
from services.capacity_service import CapacityService
from services.unit_of_work import record_event, unit_of_work

logger = logging.getLogger(__name__)


class RequestService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.capacity = CapacityService(session)

    # ------------------------------------------------------------------ queries

    async def get_request(self, request_id: int, lock: bool = False) -> TransportRequest:
        async with unit_of_work(self.session):
            stmt = select(TransportRequest).where(TransportRequest.id == request_id)
            if lock:
                stmt = stmt.with_for_update()
            result = await self.session.execute(stmt)
            request = result.scalar_one_or_none()
            if request is None:
                raise NotFound(f"Transport request {request_id} not found", {"request_id": request_id})
            return request

    async def find_live_request(self, student_id: str, term_id: str) -> Optional[TransportRequest]:
        async with unit_of_work(self.session):
            result = await self.session.execute(
                select(TransportRequest)
                .where(TransportRequest.student_id == student_id)
                .where(TransportRequest.term_id == term_id)
                .where(TransportRequest.live_marker == True)  # noqa: E712
            )
            return result.scalars().first()

    async def list_requests(
        self,
        term_id: Optional[str] = None,
        status: Optional[str] = None,
        route_id: Optional[int] = None,
        student_id: Optional[str] = None,
    ) -> List[TransportRequest]:
        async with unit_of_work(self.session):
            stmt = select(TransportRequest)
            if term_id:
                stmt = stmt.where(TransportRequest.term_id == term_id)
            if status:
                stmt = stmt.where(TransportRequest.status == parse_status(RequestStatus, status).value)
            if route_id is not None:
                stmt = stmt.where(TransportRequest.route_id == route_id)
            if student_id:
                stmt = stmt.where(TransportRequest.student_id == student_id)
            stmt = stmt.order_by(TransportRequest.requested_at, TransportRequest.id)
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------ commands

    async def create_request(
        self,
        student_id: str,
        term_id: str,
        route_id: int,
        stop_id: int,
        preferred_bus_id: Optional[int] = None,
        preferred_seat_label: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransportRequest:
        if not student_id or not term_id:
            raise ValidationError("student_id and term_id are required")

        async with unit_of_work(self.session):
            route = await self.capacity.get_route(route_id)
            if not route.is_active:
                raise ValidationError(f"Route {route.name} is not accepting requests", {"route_id": route_id})
            await self._validate_stop(route_id, stop_id)
            await self._validate_preference(route_id, preferred_bus_id, preferred_seat_label)

            if await self.find_live_request(student_id, term_id) is not None:
                raise DuplicateActiveRequest(
                    "You already have an active transport request for this term",
                    {"student_id": student_id, "term_id": term_id},
                )

            availability = await self.capacity.route_availability(route_id, term_id)
            if availability.is_full:
                if settings.REQUEST_CAPACITY_CHECK == "strict":
                    raise RouteFull(f"Route {route.name} is full for this term", availability.model_dump())
                logger.warning("Request on full route %s accepted (advisory capacity check)", route_id)

            request = TransportRequest(
                student_id=student_id,
                term_id=term_id,
                route_id=route_id,
                stop_id=stop_id,
                preferred_bus_id=preferred_bus_id,
                preferred_seat_label=preferred_seat_label,
                notes=notes,
                status=RequestStatus.PENDING.value,
                requested_at=datetime.utcnow(),
                live_marker=True,
            )
            self.session.add(request)
            try:
                await self.session.flush()
            except IntegrityError:
                # a concurrent submission for the same (student, term) won
                raise DuplicateActiveRequest(
                    "You already have an active transport request for this term",
                    {"student_id": student_id, "term_id": term_id},
                )
        logger.info("Transport request %s created: student=%s term=%s route=%s", request.id, student_id, term_id, route_id)
        return request

    async def reject(self, request_id: int, reason: str, actor: str) -> TransportRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        async with unit_of_work(self.session):
            request = await self.get_request(request_id, lock=True)
            self._require_transition(request, RequestStatus.REJECTED)
            request.status = RequestStatus.REJECTED.value
            request.rejection_reason = reason.strip()
            request.reviewed_at = datetime.utcnow()
            request.reviewed_by = actor
            request.live_marker = None
            record_event(self.session, TransportEvent(
                event_type="request.rejected",
                student_id=request.student_id,
                request_id=request.id,
                term_id=request.term_id,
                outcome=RequestStatus.REJECTED.value,
                reason=request.rejection_reason,
            ))
        logger.info("Transport request %s rejected by %s", request_id, actor)
        return request

    async def waitlist(self, request_id: int, actor: str) -> TransportRequest:
        async with unit_of_work(self.session):
            request = await self.get_request(request_id, lock=True)
            if request.status != RequestStatus.PENDING.value:
                raise self._invalid_state(request, RequestStatus.WAITLISTED)
            request.status = RequestStatus.WAITLISTED.value
            request.reviewed_at = datetime.utcnow()
            request.reviewed_by = actor
            record_event(self.session, TransportEvent(
                event_type="request.waitlisted",
                student_id=request.student_id,
                request_id=request.id,
                term_id=request.term_id,
                outcome=RequestStatus.WAITLISTED.value,
            ))
        logger.info("Transport request %s waitlisted by %s", request_id, actor)
        return request

    async def cancel_by_student(self, request_id: int, student_id: Optional[str] = None) -> TransportRequest:
        """
        Withdraw a pending or waitlisted request. When student_id is given the
        request must belong to that student.
        """
        async with unit_of_work(self.session):
            request = await self.get_request(request_id, lock=True)
            if student_id is not None and request.student_id != student_id:
                raise NotFound(f"Transport request {request_id} not found", {"request_id": request_id})
            if request.status == RequestStatus.APPROVED.value:
                raise InvalidRequestState(
                    "Approved requests cannot be cancelled; cancel the subscription instead",
                    {"request_id": request_id, "status": request.status},
                )
            self._require_transition(request, RequestStatus.CANCELLED)
            request.status = RequestStatus.CANCELLED.value
            request.live_marker = None
            record_event(self.session, TransportEvent(
                event_type="request.cancelled",
                student_id=request.student_id,
                request_id=request.id,
                term_id=request.term_id,
                outcome=RequestStatus.CANCELLED.value,
            ))
        logger.info("Transport request %s cancelled by student %s", request_id, request.student_id)
        return request

    async def mark_approved(self, request: TransportRequest, actor: str) -> TransportRequest:
        """Called by the approval workflow inside its transaction."""
        self._require_transition(request, RequestStatus.APPROVED)
        request.status = RequestStatus.APPROVED.value
        request.reviewed_at = datetime.utcnow()
        request.reviewed_by = actor
        request.rejection_reason = None
        await self.session.flush()
        return request

    # ------------------------------------------------------------------ helpers

    async def _validate_stop(self, route_id: int, stop_id: int) -> Stop:
        result = await self.session.execute(select(Stop).where(Stop.id == stop_id))
        stop = result.scalar_one_or_none()
        if stop is None or stop.route_id != route_id:
            raise ValidationError("Stop does not belong to the selected route", {"route_id": route_id, "stop_id": stop_id})
        if not stop.is_active:
            raise ValidationError(f"Stop {stop.name} is not in service", {"stop_id": stop_id})
        return stop

    async def _validate_preference(self, route_id: int, bus_id: Optional[int], seat_label: Optional[str]) -> None:
        if bus_id is None:
            if seat_label:
                raise ValidationError("A preferred seat requires a preferred bus")
            return
        bus = await self.capacity.get_bus(bus_id)
        if not bus.is_active or not await self.capacity.bus_serves_route(bus_id, route_id):
            raise ValidationError(f"Bus {bus.bus_number} does not serve this route", {"bus_id": bus_id})
        if seat_label and not SeatLayout.for_bus(bus).contains(seat_label):
            raise ValidationError(
                f"Seat {seat_label} does not exist on bus {bus.bus_number}",
                {"bus_id": bus_id, "seat_label": seat_label},
            )

    def _require_transition(self, request: TransportRequest, target: RequestStatus) -> None:
        if not can_transition(request.status, target.value):
            raise self._invalid_state(request, target)

    @staticmethod
    def _invalid_state(request: TransportRequest, target: RequestStatus) -> InvalidRequestState:
        return InvalidRequestState(
            f"Request {request.id} is {request.status} and cannot become {target.value}",
            {"request_id": request.id, "status": request.status, "target": target.value},
        )
