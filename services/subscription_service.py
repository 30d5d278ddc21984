"""
Subscription manager: durable seat/route grants.

- create_subscription(): only called by the approval workflow, inside its transaction
- cancel(): student- or operator-initiated; releases the seat immediately and
  lets the student submit a new request for the term
- list_subscriptions() / manifest(): read views for operators and drivers

Subscriptions are never deleted; cancellation is a status change that drops the
row out of the active uniqueness constraints.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.errors import InvalidRequestState, InvariantViolation, NotFound
from models.db_models import Bus, Stop, TransportRequest, TransportSubscription
from models.events import TransportEvent
from models.status import SubscriptionStatus, parse_status
from services.capacity_service import CapacityService
from services.seat_allocator import SeatAllocator
from services.unit_of_work import record_event, unit_of_work

logger = logging.getLogger(__name__)


class SubscriptionService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.allocator = SeatAllocator(session)
        self.capacity = CapacityService(session)

    async def get_subscription(self, subscription_id: int, lock: bool = False) -> TransportSubscription:
        async with unit_of_work(self.session):
            stmt = select(TransportSubscription).where(TransportSubscription.id == subscription_id)
            if lock:
                stmt = stmt.with_for_update()
            result = await self.session.execute(stmt)
            subscription = result.scalar_one_or_none()
            if subscription is None:
                raise NotFound(f"Subscription {subscription_id} not found", {"subscription_id": subscription_id})
            return subscription

    async def find_active(self, student_id: str, term_id: str) -> Optional[TransportSubscription]:
        async with unit_of_work(self.session):
            result = await self.session.execute(
                select(TransportSubscription)
                .where(TransportSubscription.student_id == student_id)
                .where(TransportSubscription.term_id == term_id)
                .where(TransportSubscription.status == SubscriptionStatus.ACTIVE.value)
            )
            return result.scalars().first()

    async def list_subscriptions(
        self,
        term_id: Optional[str] = None,
        student_id: Optional[str] = None,
        route_id: Optional[int] = None,
        bus_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[TransportSubscription]:
        async with unit_of_work(self.session):
            stmt = select(TransportSubscription)
            if term_id:
                stmt = stmt.where(TransportSubscription.term_id == term_id)
            if student_id:
                stmt = stmt.where(TransportSubscription.student_id == student_id)
            if route_id is not None:
                stmt = stmt.where(TransportSubscription.route_id == route_id)
            if bus_id is not None:
                stmt = stmt.where(TransportSubscription.assigned_bus_id == bus_id)
            if status:
                stmt = stmt.where(TransportSubscription.status == parse_status(SubscriptionStatus, status).value)
            result = await self.session.execute(stmt.order_by(TransportSubscription.started_at, TransportSubscription.id))
            return list(result.scalars().all())

    async def create_subscription(
        self,
        request: TransportRequest,
        bus: Bus,
        seat_label: Optional[str] = None,
    ) -> TransportSubscription:
        """
        Insert the active subscription for an approving request, then claim the
        seat through the allocator. The caller moves the request to approved in
        the same transaction.
        """
        async with unit_of_work(self.session):
            subscription = TransportSubscription(
                request_id=request.id,
                student_id=request.student_id,
                term_id=request.term_id,
                route_id=request.route_id,
                stop_id=request.stop_id,
                assigned_bus_id=bus.id,
                seat_label=None,
                status=SubscriptionStatus.ACTIVE.value,
                started_at=datetime.utcnow(),
                active_marker=True,
            )
            self.session.add(subscription)
            try:
                await self.session.flush()
            except IntegrityError:
                logger.critical(
                    "Second active subscription attempted for student=%s term=%s (request %s)",
                    request.student_id, request.term_id, request.id,
                )
                raise InvariantViolation(
                    "Student already holds an active subscription for this term",
                    {"student_id": request.student_id, "term_id": request.term_id, "request_id": request.id},
                )

            if seat_label:
                await self.allocator.claim_seat(subscription, bus, seat_label)
        return subscription

    async def cancel(
        self,
        subscription_id: int,
        actor: str,
        reason: str = "",
        student_id: Optional[str] = None,
    ) -> TransportSubscription:
        """
        Cancel an active subscription. With student_id set the subscription must
        belong to that student (student-initiated cancellation).
        """
        async with unit_of_work(self.session):
            subscription = await self.get_subscription(subscription_id, lock=True)
            if student_id is not None and subscription.student_id != student_id:
                raise NotFound(f"Subscription {subscription_id} not found", {"subscription_id": subscription_id})
            if subscription.status != SubscriptionStatus.ACTIVE.value:
                raise InvalidRequestState(
                    f"Subscription {subscription_id} is already {subscription.status}",
                    {"subscription_id": subscription_id, "status": subscription.status},
                )

            subscription.status = SubscriptionStatus.CANCELLED.value
            subscription.cancelled_at = datetime.utcnow()
            subscription.cancelled_by = actor
            subscription.cancellation_reason = (reason or "").strip() or None
            subscription.active_marker = None

            # the approved request stops blocking a new request for the term
            result = await self.session.execute(
                select(TransportRequest).where(TransportRequest.id == subscription.request_id)
            )
            request = result.scalar_one_or_none()
            if request is not None:
                request.live_marker = None

            await self.session.flush()
            record_event(self.session, TransportEvent(
                event_type="subscription.cancelled",
                student_id=subscription.student_id,
                request_id=subscription.request_id,
                subscription_id=subscription.id,
                term_id=subscription.term_id,
                outcome=SubscriptionStatus.CANCELLED.value,
                reason=subscription.cancellation_reason,
            ))
        logger.info(
            "Subscription %s cancelled by %s (bus=%s seat=%s)",
            subscription_id, actor, subscription.assigned_bus_id, subscription.seat_label,
        )
        return subscription

    async def manifest(self, route_id: int, term_id: str) -> Dict:
        """
        Active riders on a route grouped by bus, each bus listing riders in stop
        order. Used for driver rosters.
        """
        async with unit_of_work(self.session):
            route = await self.capacity.get_route(route_id)
            buses = await self.capacity.route_buses(route_id, active_only=False)
            stops_result = await self.session.execute(
                select(Stop).where(Stop.route_id == route_id).order_by(Stop.stop_order, Stop.id)
            )
            stops = {stop.id: stop for stop in stops_result.scalars().all()}
            riders = await self.list_subscriptions(
                term_id=term_id, route_id=route_id, status=SubscriptionStatus.ACTIVE.value
            )

        by_bus = defaultdict(list)
        for sub in riders:
            stop = stops.get(sub.stop_id)
            by_bus[sub.assigned_bus_id].append({
                "subscription_id": sub.id,
                "student_id": sub.student_id,
                "seat_label": sub.seat_label,
                "stop_id": sub.stop_id,
                "stop_name": stop.name if stop else None,
                "stop_order": stop.stop_order if stop else None,
                "pickup_time": stop.pickup_time.isoformat() if stop and stop.pickup_time else None,
                "dropoff_time": stop.dropoff_time.isoformat() if stop and stop.dropoff_time else None,
            })

        bus_lookup = {bus.id: bus for bus in buses}
        manifest_buses = []
        for bus_id, entries in sorted(by_bus.items()):
            entries.sort(key=lambda e: (e["stop_order"] is None, e["stop_order"] or 0, e["seat_label"] or ""))
            bus = bus_lookup.get(bus_id)
            manifest_buses.append({
                "bus_id": bus_id,
                "bus_number": bus.bus_number if bus else None,
                "riders": entries,
            })
        return {
            "route_id": route.id,
            "route_name": route.name,
            "term_id": term_id,
            "total_riders": len(riders),
            "buses": manifest_buses,
        }
