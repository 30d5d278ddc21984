import pytest

from conftest import TERM
from config.settings import settings
from core.errors import DuplicateActiveRequest, InvalidRequestState, NotFound, RouteFull, ValidationError
from models.db_models import Route, Stop
from services.approval_service import ApprovalService
from services.notification_service import notification_service
from services.request_service import RequestService


@pytest.mark.asyncio
async def test_create_request_starts_pending(session, fleet, submit):
    request = await submit("S1", preferred_bus_id=fleet.b1, preferred_seat_label="2B", notes="near the door")
    assert request.id is not None
    assert request.status == "pending"
    assert request.term_id == TERM
    assert request.preferred_seat_label == "2B"

    found = await RequestService(session).find_live_request("S1", TERM)
    assert found.id == request.id


@pytest.mark.asyncio
async def test_second_live_request_for_term_is_rejected(session, fleet, submit):
    await submit("S2")
    with pytest.raises(DuplicateActiveRequest):
        await submit("S2", route=fleet.r2)

    # a different term is independent
    other = await submit("S2", term="2025-T2")
    assert other.status == "pending"


@pytest.mark.asyncio
async def test_rejected_request_does_not_block_new_request(session, fleet, submit):
    first = await submit("S3")
    await RequestService(session).reject(first.id, "Stop moved", actor="op1")

    second = await submit("S3", route=fleet.r2)
    assert second.status == "pending"


@pytest.mark.asyncio
async def test_cancelled_request_does_not_block_new_request(session, fleet, submit):
    first = await submit("S4")
    cancelled = await RequestService(session).cancel_by_student(first.id, student_id="S4")
    assert cancelled.status == "cancelled"

    second = await submit("S4")
    assert second.id != first.id


@pytest.mark.asyncio
async def test_approved_request_blocks_new_request(session, fleet, submit):
    first = await submit("S5")
    await ApprovalService(session).approve(first.id, actor="op1")
    with pytest.raises(DuplicateActiveRequest):
        await submit("S5", route=fleet.r2)


@pytest.mark.asyncio
async def test_reject_requires_reason(session, fleet, submit):
    request = await submit("S6")
    request_id = request.id
    with pytest.raises(ValidationError):
        await RequestService(session).reject(request_id, "   ", actor="op1")

    unchanged = await RequestService(session).get_request(request_id)
    assert unchanged.status == "pending"


@pytest.mark.asyncio
async def test_reject_records_reason_and_reviewer(session, fleet, submit):
    request = await submit("S7")
    rejected = await RequestService(session).reject(request.id, "  Route suspended  ", actor="op1")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Route suspended"
    assert rejected.reviewed_by == "op1"
    assert rejected.reviewed_at is not None

    events = notification_service.recent_events()
    assert events[-1]["event"]["event_type"] == "request.rejected"
    assert events[-1]["event"]["reason"] == "Route suspended"


@pytest.mark.asyncio
async def test_waitlist_only_from_pending(session, fleet, submit):
    request = await submit("S8")
    service = RequestService(session)
    waitlisted = await service.waitlist(request.id, actor="op1")
    assert waitlisted.status == "waitlisted"

    with pytest.raises(InvalidRequestState):
        await service.waitlist(request.id, actor="op1")

    # waitlisted requests can still be rejected
    rejected = await service.reject(request.id, "No room this term", actor="op1")
    assert rejected.status == "rejected"


@pytest.mark.asyncio
async def test_terminal_states_do_not_move(session, fleet, submit):
    request = await submit("S9")
    request_id = request.id
    service = RequestService(session)
    await service.reject(request_id, "Incomplete address", actor="op1")

    with pytest.raises(InvalidRequestState):
        await service.waitlist(request_id, actor="op1")
    with pytest.raises(InvalidRequestState):
        await service.cancel_by_student(request_id, student_id="S9")
    with pytest.raises(InvalidRequestState):
        await ApprovalService(session).approve(request_id, actor="op1")


@pytest.mark.asyncio
async def test_approved_request_cannot_be_cancelled_as_request(session, fleet, submit):
    request = await submit("S10")
    request_id = request.id
    await ApprovalService(session).approve(request_id, actor="op1")
    with pytest.raises(InvalidRequestState):
        await RequestService(session).cancel_by_student(request_id, student_id="S10")


@pytest.mark.asyncio
async def test_student_cannot_cancel_someone_elses_request(session, fleet, submit):
    request = await submit("S11")
    with pytest.raises(NotFound):
        await RequestService(session).cancel_by_student(request.id, student_id="S12")


@pytest.mark.asyncio
async def test_stop_must_belong_to_route(session, fleet):
    with pytest.raises(ValidationError):
        await RequestService(session).create_request("S13", TERM, fleet.r1, fleet.r2_stop)


@pytest.mark.asyncio
async def test_preferred_bus_must_serve_route(session, fleet, submit):
    with pytest.raises(ValidationError):
        await submit("S14", preferred_bus_id=fleet.b9)
    with pytest.raises(ValidationError):
        await submit("S14", preferred_bus_id=fleet.b1, preferred_seat_label="11A")
    with pytest.raises(ValidationError):
        await submit("S14", preferred_seat_label="1A")


@pytest.mark.asyncio
async def test_inactive_route_and_stop_are_refused(session, fleet, submit):
    stop = await session.get(Stop, fleet.r1_stop2)
    stop.is_active = False
    await session.commit()
    with pytest.raises(ValidationError):
        await submit("S15", stop=fleet.r1_stop2)

    route = await session.get(Route, fleet.r2)
    route.is_active = False
    await session.commit()
    with pytest.raises(ValidationError):
        await submit("S15", route=fleet.r2)


@pytest.mark.asyncio
async def test_request_on_full_route_is_refused(session, fleet, submit):
    first = await submit("S16", route=fleet.r2)
    await ApprovalService(session).approve(first.id, actor="op1")

    with pytest.raises(RouteFull):
        await submit("S17", route=fleet.r2)
    assert await RequestService(session).find_live_request("S17", TERM) is None


@pytest.mark.asyncio
async def test_request_on_unprovisioned_route_is_refused(session, fleet, submit):
    with pytest.raises(RouteFull):
        await submit("S18", route=fleet.r3)


@pytest.mark.asyncio
async def test_advisory_capacity_check_accepts_request(session, fleet, submit, monkeypatch):
    monkeypatch.setattr(settings, "REQUEST_CAPACITY_CHECK", "advisory")
    first = await submit("S19", route=fleet.r2)
    await ApprovalService(session).approve(first.id, actor="op1")

    second = await submit("S20", route=fleet.r2)
    assert second.status == "pending"
    # approval stays authoritative
    with pytest.raises(RouteFull):
        await ApprovalService(session).approve(second.id, actor="op1")


@pytest.mark.asyncio
async def test_list_requests_filters(session, fleet, submit):
    a = await submit("S21")
    await submit("S22", route=fleet.r2)
    await RequestService(session).waitlist(a.id, actor="op1")

    service = RequestService(session)
    assert [r.student_id for r in await service.list_requests(term_id=TERM, status="waitlisted")] == ["S21"]
    assert [r.student_id for r in await service.list_requests(route_id=fleet.r2)] == ["S22"]
    assert [r.student_id for r in await service.list_requests(student_id="S21")] == ["S21"]
    assert len(await service.list_requests(term_id=TERM)) == 2


@pytest.mark.asyncio
async def test_unknown_status_filter_is_a_validation_error(session, fleet, submit):
    await submit("S23")
    with pytest.raises(ValidationError) as exc_info:
        await RequestService(session).list_requests(status="bogus")
    assert "pending" in exc_info.value.details["allowed"]
