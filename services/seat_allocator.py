"""
Seat allocator: the single authority over (bus, seat label, term) claims.

The occupancy lookup in is_seat_free() is only a fast path. The guard that two
concurrent approvals cannot both hold a seat is the unique constraint
ux_subscription_active_seat; claim_seat() writes the label and flushes inside the
caller's transaction so a losing writer sees IntegrityError and the whole
approval rolls back.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.errors import SeatAlreadyTaken, ValidationError
from models.db_models import Bus, TransportSubscription
from models.seat_layout import SeatLayout
from models.status import SubscriptionStatus
from services.capacity_service import CapacityService
from services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class SeatAllocator:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.capacity = CapacityService(session)

    async def is_seat_free(self, bus_id: int, seat_label: str, term_id: str) -> bool:
        async with unit_of_work(self.session):
            bus = await self.capacity.get_bus(bus_id)
            if not SeatLayout.for_bus(bus).contains(seat_label):
                return False
            return not await self._seat_held(bus_id, seat_label, term_id)

    async def claim_seat(self, subscription: TransportSubscription, bus: Bus, seat_label: str) -> TransportSubscription:
        """
        Set `seat_label` on an active subscription inside the current transaction.

        Raises ValidationError for labels outside the bus layout and
        SeatAlreadyTaken when another active subscription holds the seat.
        """
        if not SeatLayout.for_bus(bus).contains(seat_label):
            raise ValidationError(
                f"Seat {seat_label} does not exist on bus {bus.bus_number}",
                {"bus_id": bus.id, "seat_label": seat_label},
            )
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise ValidationError("Seats can only be claimed for active subscriptions")

        async with unit_of_work(self.session):
            if await self._seat_held(bus.id, seat_label, subscription.term_id, exclude_id=subscription.id):
                logger.warning("Seat %s on bus %s already held for term %s", seat_label, bus.id, subscription.term_id)
                raise self._taken(bus, seat_label, subscription.term_id)

            subscription.assigned_bus_id = bus.id
            subscription.seat_label = seat_label
            try:
                await self.session.flush()
            except IntegrityError:
                # lost the race to a concurrent claim that committed first
                logger.warning("Seat %s on bus %s claimed concurrently (term %s)", seat_label, bus.id, subscription.term_id)
                raise self._taken(bus, seat_label, subscription.term_id)
        return subscription

    async def _seat_held(self, bus_id: int, seat_label: str, term_id: str, exclude_id=None) -> bool:
        stmt = (
            select(TransportSubscription.id)
            .where(TransportSubscription.assigned_bus_id == bus_id)
            .where(TransportSubscription.seat_label == seat_label)
            .where(TransportSubscription.term_id == term_id)
            .where(TransportSubscription.status == SubscriptionStatus.ACTIVE.value)
        )
        if exclude_id is not None:
            stmt = stmt.where(TransportSubscription.id != exclude_id)
        result = await self.session.execute(stmt)
        return result.first() is not None

    @staticmethod
    def _taken(bus: Bus, seat_label: str, term_id: str) -> SeatAlreadyTaken:
        return SeatAlreadyTaken(
            f"Seat {seat_label} on bus {bus.bus_number} is already taken; choose another seat",
            {"bus_id": bus.id, "seat_label": seat_label, "term_id": term_id},
        )
