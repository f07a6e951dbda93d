from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from fastapi.encoders import jsonable_encoder
from typing import List, Sequence, Tuple
from datetime import datetime
import logging

from app.modules.notifications.models import OutboundEvent, OutboundEventStatus
from app.modules.notifications.schemas import DomainEvent

logger = logging.getLogger(__name__)


class EventOutbox:
    """
    Transactional outbox for domain events.
    Delivery (email, SMS, push) belongs to the notification collaborator,
    which polls pending events and acknowledges them.
    """

    @staticmethod
    def record(db: AsyncSession, events: Sequence[DomainEvent]) -> None:
        """Stage events in the caller's transaction; the caller commits"""
        for event in events:
            db.add(OutboundEvent(
                event_type=event.event_type,
                priority=event.priority,
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                recipient=event.recipient,
                payload=jsonable_encoder(event.payload),
                status=OutboundEventStatus.PENDING,
            ))
            logger.info(f"Event {event.event_type} for {event.entity_type} {event.entity_id}")

    @staticmethod
    async def list_events(
        db: AsyncSession,
        status: OutboundEventStatus = OutboundEventStatus.PENDING,
        event_type: str = None,
        limit: int = 100,
    ) -> Tuple[List[OutboundEvent], int]:
        query = select(OutboundEvent).where(OutboundEvent.status == status)
        if event_type:
            query = query.where(OutboundEvent.event_type == event_type)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        result = await db.execute(query.order_by(OutboundEvent.id).limit(limit))
        return list(result.scalars().all()), total

    @staticmethod
    async def mark_dispatched(db: AsyncSession, event_ids: List[int]) -> int:
        result = await db.execute(
            update(OutboundEvent)
            .where(
                OutboundEvent.id.in_(event_ids),
                OutboundEvent.status == OutboundEventStatus.PENDING,
            )
            .values(status=OutboundEventStatus.DISPATCHED, dispatched_at=datetime.utcnow())
        )
        await db.commit()
        return result.rowcount
