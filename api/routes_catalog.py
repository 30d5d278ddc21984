# api/routes_catalog.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Principal, get_current_principal
from core.db import get_db_session
from core.response import ok
from services.capacity_service import CapacityService
from services.seat_allocator import SeatAllocator

router = APIRouter()


def _route_summary(route) -> dict:
    return {
        "id": route.id,
        "name": route.name,
        "code": route.code,
        "description": route.description,
        "campus_ids": route.campus_ids,
        "is_active": route.is_active,
        "stops": [
            {
                "id": stop.id,
                "name": stop.name,
                "address": stop.address,
                "stop_order": stop.stop_order,
                "pickup_time": stop.pickup_time.isoformat() if stop.pickup_time else None,
                "dropoff_time": stop.dropoff_time.isoformat() if stop.dropoff_time else None,
            }
            for stop in route.stops if stop.is_active
        ],
    }


@router.get("/routes")
async def list_routes(
    term_id: str,
    campus_id: Optional[int] = None,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    """Active routes for a campus with live availability for the term."""
    return ok(await CapacityService(session).list_route_availability(term_id, campus_id=campus_id))


@router.get("/routes/{route_id}")
async def get_route(
    route_id: int,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    route = await CapacityService(session).get_route(route_id)
    return ok(_route_summary(route))


@router.get("/routes/{route_id}/availability")
async def route_availability(
    route_id: int,
    term_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    availability = await CapacityService(session).route_availability(route_id, term_id)
    return ok(availability.model_dump())


@router.get("/routes/{route_id}/buses")
async def route_buses(
    route_id: int,
    term_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    breakdown = await CapacityService(session).bus_availability(route_id, term_id)
    return ok([b.model_dump() for b in breakdown])


@router.get("/buses/{bus_id}/seats")
async def bus_seats(
    bus_id: int,
    term_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    """Seat map for pickers: every layout label with its occupied flag."""
    return ok(await CapacityService(session).seat_map(bus_id, term_id))


@router.get("/buses/{bus_id}/seats/{seat_label}")
async def seat_status(
    bus_id: int,
    seat_label: str,
    term_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db_session),
):
    free = await SeatAllocator(session).is_seat_free(bus_id, seat_label, term_id)
    return ok({"bus_id": bus_id, "seat_label": seat_label, "term_id": term_id, "free": free})
