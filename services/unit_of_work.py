"""
Transaction boundary for transport operations.

Every public service method runs inside `unit_of_work(session)`:
- the outermost call opens and commits the transaction
- nested calls (approve -> create_subscription -> claim_seat) join it
- events recorded with `record_event` are published only after the outermost
  commit, and dropped if the transaction rolls back
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.events import TransportEvent
from services.notification_service import NotificationService, notification_service

OUTBOX_KEY = "transport_outbox"
DEPTH_KEY = "transport_uow_depth"


def record_event(session: AsyncSession, event: TransportEvent) -> None:
    session.info.setdefault(OUTBOX_KEY, []).append(event)


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession,
    notifier: Optional[NotificationService] = None,
) -> AsyncIterator[AsyncSession]:
    depth = session.info.get(DEPTH_KEY, 0)
    if depth:
        session.info[DEPTH_KEY] = depth + 1
        try:
            yield session
        finally:
            session.info[DEPTH_KEY] = depth
        return

    # a transaction autobegun by a plain read outside any unit of work
    if session.in_transaction():
        await session.commit()

    session.info[DEPTH_KEY] = 1
    try:
        async with session.begin():
            yield session
    except BaseException:
        session.info.pop(OUTBOX_KEY, None)
        raise
    finally:
        session.info[DEPTH_KEY] = 0

    events = session.info.pop(OUTBOX_KEY, [])
    if events:
        await (notifier or notification_service).publish_all(events)
