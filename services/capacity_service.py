"""
Capacity model for transport routes and buses.

Purpose:
- Answer "how many seats are free on this route, for this term" from current
  subscription rows (no cached occupancy, so a committed claim is never missed)
- List occupied seat labels per bus for seat pickers and the seat allocator

Key methods:
- route_availability(route_id, term_id): totals for one route
- bus_occupancy(bus_id, term_id): set of held seat labels
- bus_availability(route_id, term_id): per-bus breakdown for a route
- list_route_availability(term_id, campus_id): active routes a campus can sign up for
- seat_map(bus_id, term_id): every layout label with its free/occupied state
"""
from typing import Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from pydantic import BaseModel

from core.errors import NotFound
from models.db_models import Bus, Route, RouteBus, TransportSubscription
from models.seat_layout import SeatLayout
from models.status import SubscriptionStatus
from services.unit_of_work import unit_of_work


class RouteAvailability(BaseModel):
    route_id: int
    total_capacity: int
    occupied_seats: int
    available_seats: int
    is_full: bool


class BusAvailability(BaseModel):
    bus_id: int
    bus_number: str
    capacity: int
    occupied_seats: int
    available_seats: int
    is_primary: bool = False


class CapacityService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_route(self, route_id: int, lock: bool = False) -> Route:
        stmt = select(Route).where(Route.id == route_id)
        if lock:
            # serializes capacity re-checks of concurrent approvals on this route
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        route = result.scalar_one_or_none()
        if route is None:
            raise NotFound(f"Route {route_id} not found", {"route_id": route_id})
        return route

    async def get_bus(self, bus_id: int) -> Bus:
        result = await self.session.execute(select(Bus).where(Bus.id == bus_id))
        bus = result.scalar_one_or_none()
        if bus is None:
            raise NotFound(f"Bus {bus_id} not found", {"bus_id": bus_id})
        return bus

    async def route_buses(self, route_id: int, active_only: bool = True) -> List[Bus]:
        """Buses serving a route, primary bus first."""
        stmt = (
            select(Bus)
            .join(RouteBus, RouteBus.bus_id == Bus.id)
            .where(RouteBus.route_id == route_id)
            .order_by(RouteBus.is_primary.desc(), Bus.id)
        )
        if active_only:
            stmt = stmt.where(Bus.is_active == True)  # noqa: E712
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def bus_serves_route(self, bus_id: int, route_id: int) -> bool:
        result = await self.session.execute(
            select(RouteBus.id).where(RouteBus.bus_id == bus_id).where(RouteBus.route_id == route_id)
        )
        return result.first() is not None

    async def count_active_on_route(self, route_id: int, term_id: str) -> int:
        result = await self.session.execute(
            select(func.count(TransportSubscription.id))
            .where(TransportSubscription.route_id == route_id)
            .where(TransportSubscription.term_id == term_id)
            .where(TransportSubscription.status == SubscriptionStatus.ACTIVE.value)
        )
        return int(result.scalar_one())

    async def count_active_on_bus(self, bus_id: int, term_id: str) -> int:
        result = await self.session.execute(
            select(func.count(TransportSubscription.id))
            .where(TransportSubscription.assigned_bus_id == bus_id)
            .where(TransportSubscription.term_id == term_id)
            .where(TransportSubscription.status == SubscriptionStatus.ACTIVE.value)
        )
        return int(result.scalar_one())

    async def route_availability(self, route_id: int, term_id: str) -> RouteAvailability:
        """
        total = sum of capacities of the route's active buses; occupied = active
        subscriptions on the route and term, seatless ones included. A route with
        no buses is reported as zero capacity (full), meaning "not provisioned yet".
        """
        async with unit_of_work(self.session):
            await self.get_route(route_id)
            buses = await self.route_buses(route_id)
            total = sum(bus.capacity or 0 for bus in buses)
            occupied = await self.count_active_on_route(route_id, term_id)
        available = total - occupied
        return RouteAvailability(
            route_id=route_id,
            total_capacity=total,
            occupied_seats=occupied,
            available_seats=available,
            is_full=available <= 0,
        )

    async def bus_occupancy(self, bus_id: int, term_id: str) -> Set[str]:
        async with unit_of_work(self.session):
            await self.get_bus(bus_id)
            result = await self.session.execute(
                select(TransportSubscription.seat_label)
                .where(TransportSubscription.assigned_bus_id == bus_id)
                .where(TransportSubscription.term_id == term_id)
                .where(TransportSubscription.status == SubscriptionStatus.ACTIVE.value)
                .where(TransportSubscription.seat_label.is_not(None))
            )
            return {label for (label,) in result.all()}

    async def bus_availability(self, route_id: int, term_id: str) -> List[BusAvailability]:
        async with unit_of_work(self.session):
            await self.get_route(route_id)
            primary_ids = await self._primary_bus_ids(route_id)
            breakdown = []
            for bus in await self.route_buses(route_id):
                occupied = await self.count_active_on_bus(bus.id, term_id)
                breakdown.append(BusAvailability(
                    bus_id=bus.id,
                    bus_number=bus.bus_number,
                    capacity=bus.capacity,
                    occupied_seats=occupied,
                    available_seats=bus.capacity - occupied,
                    is_primary=bus.id in primary_ids,
                ))
            return breakdown

    async def list_route_availability(self, term_id: str, campus_id: Optional[int] = None) -> List[Dict]:
        async with unit_of_work(self.session):
            result = await self.session.execute(
                select(Route).where(Route.is_active == True).order_by(Route.name)  # noqa: E712
            )
            routes = [r for r in result.scalars().all() if campus_id is None or r.serves_campus(campus_id)]
            listing = []
            for route in routes:
                availability = await self.route_availability(route.id, term_id)
                listing.append({
                    "route_id": route.id,
                    "name": route.name,
                    "code": route.code,
                    **availability.model_dump(exclude={"route_id"}),
                })
            return listing

    async def seat_map(self, bus_id: int, term_id: str) -> Dict:
        async with unit_of_work(self.session):
            bus = await self.get_bus(bus_id)
            layout = SeatLayout.for_bus(bus)
            occupied = await self.bus_occupancy(bus_id, term_id)
        return {
            "bus_id": bus.id,
            "bus_number": bus.bus_number,
            "capacity": bus.capacity,
            "rows": layout.rows,
            "columns": layout.columns,
            "seats": [{"label": label, "occupied": label in occupied} for label in layout.labels()],
        }

    async def _primary_bus_ids(self, route_id: int) -> Set[int]:
        result = await self.session.execute(
            select(RouteBus.bus_id).where(RouteBus.route_id == route_id).where(RouteBus.is_primary == True)  # noqa: E712
        )
        return {bus_id for (bus_id,) in result.all()}
