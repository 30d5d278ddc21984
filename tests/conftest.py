import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Tests build their own SQLite engine; keep the module-level engine and RabbitMQ off.
os.environ["DATABASE_URL"] = "disabled"
os.environ["RABBITMQ_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport


# Ensure project root is on sys.path so `services.*` imports work
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


# Explicitly enable pytest-asyncio plugin for async tests/fixtures
pytest_plugins = ("pytest_asyncio",)


from core.auth import create_access_token
from core.db import Base, build_engine, build_session_maker, get_db_session
from models.db_models import Bus, Route, RouteBus, Stop
from services.notification_service import notification_service
from services.request_service import RequestService

TERM = "2025-T1"


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """Fresh file-backed SQLite database per test (file so sessions can run concurrently)."""
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'transport.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture()
async def session_maker(engine):
    return build_session_maker(engine)


@pytest_asyncio.fixture()
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture(autouse=True)
def clear_events():
    notification_service.clear()
    yield
    notification_service.clear()


@pytest_asyncio.fixture()
async def fleet(session_maker):
    """
    R1: one 40-seat bus (B1, 10 rows x A-D) plus a small 2-seat bus (B2).
    R2: one single-seat bus (B9).
    R3: no buses yet (not provisioned).
    """
    async with session_maker() as s:
        async with s.begin():
            r1 = Route(name="North Loop", code="R1", campus_ids=[1])
            r2 = Route(name="Lakeside Shuttle", code="R2", campus_ids=None)
            r3 = Route(name="Hillside Extension", code="R3", campus_ids=[2])
            b1 = Bus(bus_number="B1", capacity=40, seat_rows=10, seat_columns=["A", "B", "C", "D"])
            b2 = Bus(bus_number="B2", capacity=2, seat_rows=1, seat_columns=["A", "B"])
            b9 = Bus(bus_number="B9", capacity=1, seat_rows=1, seat_columns=["A"])
            s.add_all([r1, r2, r3, b1, b2, b9])
            await s.flush()
            r1_stop = Stop(route_id=r1.id, name="Palm Estate Gate", stop_order=1)
            r1_stop2 = Stop(route_id=r1.id, name="Market Junction", stop_order=2)
            r2_stop = Stop(route_id=r2.id, name="Lakeside Roundabout", stop_order=1)
            r3_stop = Stop(route_id=r3.id, name="Hill Top", stop_order=1)
            s.add_all([r1_stop, r1_stop2, r2_stop, r3_stop])
            s.add_all([
                RouteBus(route_id=r1.id, bus_id=b1.id, is_primary=True),
                RouteBus(route_id=r1.id, bus_id=b2.id),
                RouteBus(route_id=r2.id, bus_id=b9.id, is_primary=True),
            ])
            await s.flush()
            return SimpleNamespace(
                r1=r1.id, r2=r2.id, r3=r3.id,
                b1=b1.id, b2=b2.id, b9=b9.id,
                r1_stop=r1_stop.id, r1_stop2=r1_stop2.id, r2_stop=r2_stop.id, r3_stop=r3_stop.id,
            )


@pytest.fixture()
def submit(session, fleet):
    """Create a pending request on R1 (or another route) for a student."""
    async def _submit(student_id, route=None, stop=None, term=TERM, **kwargs):
        route = route if route is not None else fleet.r1
        if stop is None:
            stop = {fleet.r1: fleet.r1_stop, fleet.r2: fleet.r2_stop, fleet.r3: fleet.r3_stop}[route]
        return await RequestService(session).create_request(student_id, term, route, stop, **kwargs)
    return _submit


def auth_headers(user_id: str, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest_asyncio.fixture()
async def api_client(session_maker):
    """Async test client for the transport API, bound to the per-test database."""
    from main import app

    async def override_get_db_session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()
