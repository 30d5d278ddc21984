from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import TERM
from core.errors import SeatAlreadyTaken, ValidationError
from models.db_models import TransportSubscription
from services.approval_service import ApprovalService
from services.request_service import RequestService
from services.seat_allocator import SeatAllocator
from services.subscription_service import SubscriptionService


@pytest.mark.asyncio
async def test_is_seat_free_reflects_active_claims(session, fleet, submit):
    allocator = SeatAllocator(session)
    assert await allocator.is_seat_free(fleet.b1, "4D", TERM) is True

    request = await submit("A1")
    await ApprovalService(session).approve(request.id, bus_id=fleet.b1, seat_label="4D", actor="op1")
    assert await allocator.is_seat_free(fleet.b1, "4D", TERM) is False
    # same seat in another term is a different claim
    assert await allocator.is_seat_free(fleet.b1, "4D", "2025-T2") is True


@pytest.mark.asyncio
async def test_labels_outside_layout_are_never_free(session, fleet):
    allocator = SeatAllocator(session)
    assert await allocator.is_seat_free(fleet.b1, "11A", TERM) is False
    assert await allocator.is_seat_free(fleet.b1, "1E", TERM) is False
    assert await allocator.is_seat_free(fleet.b9, "1B", TERM) is False


@pytest.mark.asyncio
async def test_unknown_seat_label_is_a_validation_error(session, fleet, submit):
    request = await submit("A2")
    request_id = request.id
    with pytest.raises(ValidationError):
        await ApprovalService(session).approve(request_id, bus_id=fleet.b1, seat_label="Z9", actor="op1")

    # nothing was written
    assert await SubscriptionService(session).find_active("A2", TERM) is None
    assert (await RequestService(session).get_request(request_id)).status == "pending"


@pytest.mark.asyncio
async def test_second_claim_on_same_seat_is_refused(session, fleet, submit):
    first = await submit("A3")
    second = await submit("A4")
    second_id = second.id
    approvals = ApprovalService(session)
    await approvals.approve(first.id, bus_id=fleet.b1, seat_label="2A", actor="op1")

    with pytest.raises(SeatAlreadyTaken):
        await approvals.approve(second_id, bus_id=fleet.b1, seat_label="2A", actor="op1")
    assert (await RequestService(session).get_request(second_id)).status == "pending"


@pytest.mark.asyncio
async def test_unique_constraint_catches_a_claim_the_fast_path_missed(session, fleet, submit, monkeypatch):
    """Simulates the race: the occupancy read says free, the insert collides."""
    first = await submit("A5")
    second = await submit("A6")
    second_id = second.id
    approvals = ApprovalService(session)
    await approvals.approve(first.id, bus_id=fleet.b1, seat_label="6B", actor="op1")

    async def never_held(self, *args, **kwargs):
        return False

    monkeypatch.setattr(SeatAllocator, "_seat_held", never_held)
    with pytest.raises(SeatAlreadyTaken):
        await approvals.approve(second_id, bus_id=fleet.b1, seat_label="6B", actor="op1")

    assert await SubscriptionService(session).find_active("A6", TERM) is None
    assert (await RequestService(session).get_request(second_id)).status == "pending"


@pytest.mark.asyncio
async def test_storage_rejects_two_active_rows_for_one_seat(session_maker, fleet, submit, session):
    first = await submit("A7")
    second = await submit("A8")

    async with session_maker() as s:
        with pytest.raises(IntegrityError):
            async with s.begin():
                for request in (first, second):
                    s.add(TransportSubscription(
                        request_id=request.id,
                        student_id=request.student_id,
                        term_id=TERM,
                        route_id=fleet.r1,
                        stop_id=fleet.r1_stop,
                        assigned_bus_id=fleet.b1,
                        seat_label="9C",
                        status="active",
                        started_at=datetime.utcnow(),
                        active_marker=True,
                    ))
                await s.flush()


@pytest.mark.asyncio
async def test_cancelled_rows_do_not_hold_the_seat(session, fleet, submit):
    first = await submit("A9")
    approvals = ApprovalService(session)
    subscription = await approvals.approve(first.id, bus_id=fleet.b1, seat_label="7C", actor="op1")
    await SubscriptionService(session).cancel(subscription.id, actor="op1", reason="Moved away")

    assert await SeatAllocator(session).is_seat_free(fleet.b1, "7C", TERM) is True
    second = await submit("A10")
    again = await approvals.approve(second.id, bus_id=fleet.b1, seat_label="7C", actor="op1")
    assert again.seat_label == "7C"
