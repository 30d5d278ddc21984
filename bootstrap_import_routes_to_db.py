"""
Import transport master data (buses, routes, stops, route-bus assignments) from JSON.

Routes, stops and buses are administrator-owned; this service never edits them
through its API. This script is how they reach the database for local setups
and term roll-over.

Usage:
    DATABASE_URL=sqlite+aiosqlite:///./transport.db python bootstrap_import_routes_to_db.py data/transport.json
"""
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, time
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config.settings import settings
from core.db import Base, build_engine, build_session_maker
from core.logging import configure_logging
from models.db_models import Bus, Route, RouteBus, Stop

logger = logging.getLogger(__name__)

DEFAULT_FILE = os.path.join("data", "transport.json")


def _parse_time(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    return time.fromisoformat(value)


async def import_buses(session: AsyncSession, buses: list) -> Dict[str, Bus]:
    """
    Upsert buses by bus_number.
    JSON shape:
        [{"bus_number": "B1", "capacity": 40, "seat_rows": 10, "seat_columns": ["A","B","C","D"],
          "license_plate": "...", "driver_name": "...", "driver_phone": "...", "is_active": true}, ...]
    """
    by_number = {}
    for entry in buses:
        number = entry["bus_number"]
        result = await session.execute(select(Bus).where(Bus.bus_number == number))
        bus = result.scalar_one_or_none()
        if bus is None:
            bus = Bus(bus_number=number)
            session.add(bus)
        bus.capacity = int(entry.get("capacity", settings.DEFAULT_BUS_CAPACITY))
        bus.seat_rows = entry.get("seat_rows")
        bus.seat_columns = entry.get("seat_columns")
        bus.license_plate = entry.get("license_plate")
        bus.driver_name = entry.get("driver_name")
        bus.driver_phone = entry.get("driver_phone")
        bus.is_active = entry.get("is_active", True)
        bus.updated_at = datetime.utcnow()
        by_number[number] = bus
    await session.flush()
    logger.info("[bootstrap] Imported/updated %s buses", len(by_number))
    return by_number


async def import_routes(session: AsyncSession, routes: list, buses: Dict[str, Bus]) -> Dict[str, Route]:
    """
    Upsert routes by code (falls back to name), replacing their stops and bus assignments.
    JSON shape:
        [{"code": "R1", "name": "North Loop", "campus_ids": [1, 2],
          "stops": [{"name": "Gate A", "address": "...", "pickup_time": "07:10", "dropoff_time": "15:40"}],
          "buses": [{"bus_number": "B1", "is_primary": true}]}, ...]
    """
    imported = {}
    for entry in routes:
        key = entry.get("code") or entry["name"]
        stmt = select(Route).where(Route.code == entry["code"]) if entry.get("code") else select(Route).where(Route.name == entry["name"])
        route = (await session.execute(stmt)).scalar_one_or_none()
        if route is None:
            route = Route(name=entry["name"], code=entry.get("code"))
            session.add(route)
        route.name = entry["name"]
        route.description = entry.get("description")
        route.campus_ids = entry.get("campus_ids")
        route.is_active = entry.get("is_active", True)
        route.updated_at = datetime.utcnow()
        await session.flush()

        # stops already referenced by requests are deactivated, not deleted
        existing = (await session.execute(select(Stop).where(Stop.route_id == route.id))).scalars().all()
        by_name = {stop.name: stop for stop in existing}
        seen = set()
        for order, stop_entry in enumerate(entry.get("stops") or [], start=1):
            stop = by_name.get(stop_entry["name"])
            if stop is None:
                stop = Stop(route_id=route.id, name=stop_entry["name"])
                session.add(stop)
            stop.address = stop_entry.get("address")
            stop.pickup_time = _parse_time(stop_entry.get("pickup_time"))
            stop.dropoff_time = _parse_time(stop_entry.get("dropoff_time"))
            stop.stop_order = stop_entry.get("stop_order", order)
            stop.is_active = True
            seen.add(stop_entry["name"])
        for stop in existing:
            if stop.name not in seen:
                stop.is_active = False

        assigned = (await session.execute(select(RouteBus).where(RouteBus.route_id == route.id))).scalars().all()
        for link in assigned:
            await session.delete(link)
        await session.flush()
        for bus_entry in entry.get("buses") or []:
            bus = buses.get(bus_entry["bus_number"])
            if bus is None:
                logger.warning("[bootstrap] Route %s references unknown bus %s; skipping", key, bus_entry["bus_number"])
                continue
            session.add(RouteBus(route_id=route.id, bus_id=bus.id, is_primary=bool(bus_entry.get("is_primary"))))
        await session.flush()
        imported[key] = route
        logger.info("[bootstrap] Imported/updated route %s with %s stops", key, len(seen))
    return imported


async def import_master_data(session: AsyncSession, data: Dict[str, Any]) -> Dict[str, Any]:
    async with session.begin():
        buses = await import_buses(session, data.get("buses") or [])
        routes = await import_routes(session, data.get("routes") or [], buses)
    return {"buses": buses, "routes": routes}


async def main(path: str):
    if not settings.db_enabled:
        raise RuntimeError(f"DATABASE_URL is not configured correctly: {settings.DATABASE_URL}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    engine = build_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with build_session_maker(engine)() as session:
        result = await import_master_data(session, data)
    await engine.dispose()
    logger.info("[bootstrap] Done: %s buses, %s routes", len(result["buses"]), len(result["routes"]))


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_FILE))
