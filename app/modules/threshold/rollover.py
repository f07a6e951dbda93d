"""
Month-boundary rollover.

Opens the current period, applies the configured carry-forward of the
previous period's unused capacity, closes every earlier period and moves
still-queued applications to the head of the current queue. Running it
again in the same month changes nothing.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, or_
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional
import logging

from app.core.config import settings
from app.modules.loans.calculations import to_money
from app.modules.loans.periods import format_period, period_of, previous_period
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox
from app.modules.threshold.models import (
    MonthlyThreshold, AllocationQueueEntry, ThresholdStatus, QueueEntryStatus
)
from app.modules.threshold.services import QUEUE_ORDER, DrainedEntry, ThresholdService

logger = logging.getLogger(__name__)


@dataclass
class RolloverResult:
    period: str
    closed_periods: List[str] = field(default_factory=list)
    carried_forward: Decimal = Decimal("0.00")
    moved_entries: int = 0
    drained: List[DrainedEntry] = field(default_factory=list)

    def __str__(self):
        return (
            f"period={self.period} closed={self.closed_periods} carried_forward={self.carried_forward} "
            f"moved={self.moved_entries} drained={len(self.drained)}"
        )


async def _recount_queued(db: AsyncSession, threshold_id: int) -> None:
    waiting = (
        select(func.count(AllocationQueueEntry.id))
        .where(
            AllocationQueueEntry.threshold_id == threshold_id,
            AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
        )
        .scalar_subquery()
    )
    await db.execute(
        update(MonthlyThreshold)
        .where(MonthlyThreshold.id == threshold_id)
        .values(total_applications_queued=waiting)
        .execution_options(synchronize_session=False)
    )


async def _apply_carry_forward(db: AsyncSession, current: MonthlyThreshold, now: datetime) -> Decimal:
    """Add a fraction of last month's unused capacity, once per period"""
    fraction = Decimal(str(settings.THRESHOLD_CARRY_FORWARD_FRACTION))
    carry = Decimal("0.00")

    if fraction > 0:
        previous_year, previous_month = previous_period(current.year, current.month)
        previous = await ThresholdService.load(db, previous_year, previous_month)
        if previous is not None:
            headroom = to_money(settings.MAX_MONTHLY_THRESHOLD) - to_money(current.maximum_amount)
            carry = max(Decimal("0.00"), min(to_money(Decimal(previous.remaining_amount) * fraction), headroom))

    result = await db.execute(
        update(MonthlyThreshold)
        .where(
            MonthlyThreshold.id == current.id,
            MonthlyThreshold.carry_forward_applied.is_(False),
            MonthlyThreshold.status != ThresholdStatus.CLOSED,
        )
        .values(
            maximum_amount=MonthlyThreshold.maximum_amount + carry,
            remaining_amount=MonthlyThreshold.remaining_amount + carry,
            carried_forward_amount=carry,
            carry_forward_applied=True,
            version=MonthlyThreshold.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return Decimal("0.00")

    if carry > 0:
        await db.execute(
            update(MonthlyThreshold)
            .where(
                MonthlyThreshold.id == current.id,
                MonthlyThreshold.status == ThresholdStatus.EXHAUSTED,
                MonthlyThreshold.remaining_amount > 0,
            )
            .values(status=ThresholdStatus.OPEN)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Carried {carry} forward into {current.period}")
    return carry


async def run_monthly_rollover(
    db: AsyncSession,
    today: Optional[date] = None,
    closed_by: str = "scheduler",
) -> RolloverResult:
    today = today or date.today()
    now = datetime.utcnow()
    year, month = period_of(today)

    current = await ThresholdService.get_or_create(db, year, month, today)
    current_id = current.id
    result = RolloverResult(period=current.period)

    result.carried_forward = await _apply_carry_forward(db, current, now)

    earlier = (await db.execute(
        select(MonthlyThreshold.id, MonthlyThreshold.year, MonthlyThreshold.month)
        .where(
            MonthlyThreshold.status != ThresholdStatus.CLOSED,
            or_(
                MonthlyThreshold.year < year,
                and_(MonthlyThreshold.year == year, MonthlyThreshold.month < month),
            ),
        )
        .order_by(MonthlyThreshold.year, MonthlyThreshold.month)
    )).all()

    events = []
    for row in earlier:
        if await ThresholdService.close(db, row.id, closed_by, now):
            period = format_period(row.year, row.month)
            result.closed_periods.append(period)
            events.append(DomainEvent(
                event_type="threshold.closed",
                entity_type="threshold",
                entity_id=period,
                recipient="admin",
                payload={"period": period, "closed_by": closed_by},
            ))

    # Waiting applications from closed periods go to the head of the current queue
    stranded = (await db.execute(
        select(AllocationQueueEntry.id, AllocationQueueEntry.threshold_id, AllocationQueueEntry.application_id)
        .join(MonthlyThreshold, MonthlyThreshold.id == AllocationQueueEntry.threshold_id)
        .where(
            MonthlyThreshold.status == ThresholdStatus.CLOSED,
            AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
        )
        .order_by(MonthlyThreshold.year, MonthlyThreshold.month, *QUEUE_ORDER)
    )).all()

    sources = set()
    for entry in stranded:
        moved = await db.execute(
            update(AllocationQueueEntry)
            .where(
                AllocationQueueEntry.id == entry.id,
                AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
            )
            .values(
                threshold_id=current_id,
                carried_over=True,
                original_threshold_id=func.coalesce(
                    AllocationQueueEntry.original_threshold_id, entry.threshold_id
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 1:
            result.moved_entries += 1
            sources.add(entry.threshold_id)
            events.append(DomainEvent(
                event_type="application.queue_carried_over",
                entity_type="application",
                entity_id=str(entry.application_id),
                payload={"period": result.period},
            ))

    for threshold_id in sources | {current_id}:
        await _recount_queued(db, threshold_id)

    EventOutbox.record(db, events)
    await db.commit()

    result.drained = await ThresholdService.drain_queue(db, current_id, now)
    logger.info(f"Monthly rollover: {result}")
    return result
