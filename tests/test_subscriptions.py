import pytest

from conftest import TERM
from core.errors import InvalidRequestState, NotFound, ValidationError
from services.approval_service import ApprovalService
from services.capacity_service import CapacityService
from services.notification_service import notification_service
from services.request_service import RequestService
from services.subscription_service import SubscriptionService


@pytest.mark.asyncio
async def test_cancel_frees_seat_and_allows_new_request(session, fleet, submit):
    """Full flow: approve, cancel, then sign up again for the same term."""
    request = await submit("C1", route=fleet.r2)
    subscription = await ApprovalService(session).approve(request.id, actor="op1")
    assert (await CapacityService(session).route_availability(fleet.r2, TERM)).is_full is True

    cancelled = await SubscriptionService(session).cancel(subscription.id, actor="C1", reason="Parent drives", student_id="C1")
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "C1"
    assert cancelled.cancellation_reason == "Parent drives"
    assert cancelled.cancelled_at is not None

    availability = await CapacityService(session).route_availability(fleet.r2, TERM)
    assert availability.is_full is False
    assert availability.available_seats == 1

    # the approved request stays approved but no longer blocks a new one
    assert (await RequestService(session).get_request(request.id)).status == "approved"
    again = await submit("C1", route=fleet.r2)
    assert again.status == "pending"


@pytest.mark.asyncio
async def test_cancel_twice_is_invalid(session, fleet, submit):
    request = await submit("C2")
    subscription = await ApprovalService(session).approve(request.id, actor="op1")
    subscription_id = subscription.id
    service = SubscriptionService(session)
    await service.cancel(subscription_id, actor="op1")

    with pytest.raises(InvalidRequestState):
        await service.cancel(subscription_id, actor="op1")


@pytest.mark.asyncio
async def test_student_cannot_cancel_someone_elses_subscription(session, fleet, submit):
    request = await submit("C3")
    subscription = await ApprovalService(session).approve(request.id, actor="op1")
    with pytest.raises(NotFound):
        await SubscriptionService(session).cancel(subscription.id, actor="C4", student_id="C4")


@pytest.mark.asyncio
async def test_cancel_unknown_subscription(session, fleet):
    with pytest.raises(NotFound):
        await SubscriptionService(session).cancel(4242, actor="op1")


@pytest.mark.asyncio
async def test_cancel_emits_event(session, fleet, submit):
    request = await submit("C5")
    subscription = await ApprovalService(session).approve(request.id, bus_id=fleet.b1, seat_label="1A", actor="op1")
    notification_service.clear()

    await SubscriptionService(session).cancel(subscription.id, actor="op1", reason="Graduated")
    events = [e["event"] for e in notification_service.recent_events()]
    assert [e["event_type"] for e in events] == ["subscription.cancelled"]
    assert events[0]["subscription_id"] == subscription.id
    assert events[0]["reason"] == "Graduated"


@pytest.mark.asyncio
async def test_list_subscriptions_filters(session, fleet, submit):
    approvals = ApprovalService(session)
    a = await approvals.approve((await submit("C6")).id, bus_id=fleet.b1, actor="op1")
    await approvals.approve((await submit("C7")).id, bus_id=fleet.b2, actor="op1")
    await SubscriptionService(session).cancel(a.id, actor="op1")

    service = SubscriptionService(session)
    assert [s.student_id for s in await service.list_subscriptions(term_id=TERM, status="active")] == ["C7"]
    assert [s.student_id for s in await service.list_subscriptions(bus_id=fleet.b1)] == ["C6"]
    assert len(await service.list_subscriptions(route_id=fleet.r1)) == 2

    with pytest.raises(ValidationError):
        await service.list_subscriptions(status="paused")


@pytest.mark.asyncio
async def test_manifest_groups_riders_by_bus_in_stop_order(session, fleet, submit):
    approvals = ApprovalService(session)
    late = await submit("C8", stop=fleet.r1_stop2)
    early = await submit("C9", stop=fleet.r1_stop)
    other_bus = await submit("C10")
    await approvals.approve(late.id, bus_id=fleet.b1, seat_label="1A", actor="op1")
    await approvals.approve(early.id, bus_id=fleet.b1, seat_label="1B", actor="op1")
    await approvals.approve(other_bus.id, bus_id=fleet.b2, actor="op1")

    manifest = await SubscriptionService(session).manifest(fleet.r1, TERM)
    assert manifest["route_name"] == "North Loop"
    assert manifest["total_riders"] == 3
    assert [b["bus_number"] for b in manifest["buses"]] == ["B1", "B2"]
    assert [r["student_id"] for r in manifest["buses"][0]["riders"]] == ["C9", "C8"]
    assert manifest["buses"][0]["riders"][0]["stop_name"] == "Palm Estate Gate"
    assert manifest["buses"][1]["riders"][0]["seat_label"] is None
