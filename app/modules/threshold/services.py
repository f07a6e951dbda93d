"""
Admission control against the monthly lending ceiling.

Every change to a threshold's amounts is a single guarded UPDATE so that
concurrent callers can never jointly overspend a period: the database
re-checks `remaining_amount >= amount` at write time and only one of two
competing requests can match. Nothing here reads a balance and writes it
back.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.orm import aliased
from sqlalchemy.exc import DBAPIError, IntegrityError
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional, Tuple
import asyncio
import enum
import logging

from app.core.config import settings
from app.core.exceptions import ConcurrencyConflict, NotFoundError, PeriodClosed, ValidationError
from app.modules.loans.calculations import to_money
from app.modules.loans.periods import format_period, period_of
from app.modules.notifications.models import EventPriority
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox
from app.modules.threshold.models import (
    MonthlyThreshold, AllocationQueueEntry, ThresholdStatus, QueueEntryStatus, AlertLevel
)

logger = logging.getLogger(__name__)

QUEUE_ORDER = (
    AllocationQueueEntry.carried_over.desc(),
    AllocationQueueEntry.submitted_at,
    AllocationQueueEntry.application_id,
)


class AllocationStatus(str, enum.Enum):
    ADMITTED = "admitted"
    QUEUED = "queued"
    REJECTED = "rejected"


class RejectionReason(str, enum.Enum):
    PERIOD_CLOSED = "period_closed"
    CAPACITY_EXHAUSTED = "capacity_exhausted"


@dataclass(frozen=True)
class DrainedEntry:
    """Queued application that has just been admitted"""
    application_id: int
    amount: Decimal
    year: int
    month: int


@dataclass
class AllocationOutcome:
    status: AllocationStatus
    year: int
    month: int
    amount: Decimal
    granted_amount: Optional[Decimal] = None
    queue_position: Optional[int] = None
    reason: Optional[RejectionReason] = None
    drained: List[DrainedEntry] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def period(self) -> str:
        return format_period(self.year, self.month)


def _backoff(attempt: int) -> float:
    return min(0.05 * attempt, 0.5)


class ThresholdService:
    """Monthly threshold lifecycle, allocation, release and queue draining"""

    # ============ Lookup ============

    @staticmethod
    async def load(db: AsyncSession, year: int, month: int) -> Optional[MonthlyThreshold]:
        result = await db.execute(
            select(MonthlyThreshold)
            .where(MonthlyThreshold.year == year, MonthlyThreshold.month == month)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def load_by_id(db: AsyncSession, threshold_id: int) -> MonthlyThreshold:
        result = await db.execute(
            select(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    async def get_threshold(db: AsyncSession, year: int, month: int) -> MonthlyThreshold:
        threshold = await ThresholdService.load(db, year, month)
        if threshold is None:
            raise NotFoundError(f"No threshold for {format_period(year, month)}")
        return threshold

    @staticmethod
    async def get_or_create(
        db: AsyncSession, year: int, month: int, today: Optional[date] = None
    ) -> MonthlyThreshold:
        """
        Threshold for a period, opened with the default ceiling on first use.
        Periods that have already ended are never created retroactively.
        """
        threshold = await ThresholdService.load(db, year, month)
        if threshold is not None:
            return threshold

        today = today or date.today()
        if (year, month) < period_of(today):
            raise PeriodClosed(f"Period {format_period(year, month)} has ended")

        maximum = to_money(settings.DEFAULT_MONTHLY_THRESHOLD)
        db.add(MonthlyThreshold(
            year=year,
            month=month,
            maximum_amount=maximum,
            allocated_amount=Decimal("0.00"),
            remaining_amount=maximum,
            carried_forward_amount=Decimal("0.00"),
            carry_forward_applied=False,
            status=ThresholdStatus.OPEN,
            alert_level=AlertLevel.NONE.value,
            version=1,
        ))
        try:
            await db.commit()
            logger.info(f"Opened threshold {format_period(year, month)} with maximum {maximum}")
        except IntegrityError:
            # Another caller opened it first
            await db.rollback()
        return await ThresholdService.load(db, year, month)

    # ============ Guarded updates ============

    @staticmethod
    async def _decrement(
        db: AsyncSession,
        threshold_id: int,
        amount: Decimal,
        now: datetime,
        respect_queue: bool,
        queued_entry_id: Optional[int] = None,
    ) -> bool:
        """
        Compare-and-decrement. With `respect_queue`, a non-empty queue also
        blocks the admission so newcomers cannot overtake waiting entries.
        With `queued_entry_id`, that entry must still be waiting.
        """
        conditions = [
            MonthlyThreshold.id == threshold_id,
            MonthlyThreshold.status == ThresholdStatus.OPEN,
            MonthlyThreshold.remaining_amount >= amount,
        ]
        if queued_entry_id is not None:
            conditions.append(
                select(AllocationQueueEntry.id)
                .where(
                    AllocationQueueEntry.id == queued_entry_id,
                    AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
                )
                .exists()
            )
        if respect_queue:
            conditions.append(
                ~select(AllocationQueueEntry.id)
                .where(
                    AllocationQueueEntry.threshold_id == threshold_id,
                    AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
                )
                .exists()
            )

        result = await db.execute(
            update(MonthlyThreshold)
            .where(*conditions)
            .values(
                remaining_amount=MonthlyThreshold.remaining_amount - amount,
                allocated_amount=MonthlyThreshold.allocated_amount + amount,
                total_applications_approved=MonthlyThreshold.total_applications_approved + 1,
                version=MonthlyThreshold.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await db.execute(
            update(MonthlyThreshold)
            .where(
                MonthlyThreshold.id == threshold_id,
                MonthlyThreshold.status == ThresholdStatus.OPEN,
                MonthlyThreshold.remaining_amount <= 0,
            )
            .values(status=ThresholdStatus.EXHAUSTED)
            .execution_options(synchronize_session=False)
        )
        return True

    @staticmethod
    async def _refresh_alerts(db: AsyncSession, threshold_id: int, now: datetime) -> List[DomainEvent]:
        """Track the utilization band; events only when crossing upwards"""
        row = (await db.execute(
            select(
                MonthlyThreshold.year,
                MonthlyThreshold.month,
                MonthlyThreshold.maximum_amount,
                MonthlyThreshold.allocated_amount,
                MonthlyThreshold.alert_level,
            ).where(MonthlyThreshold.id == threshold_id)
        )).one()

        maximum = Decimal(row.maximum_amount)
        utilization = Decimal(row.allocated_amount) / maximum * 100 if maximum > 0 else Decimal(0)
        if utilization >= settings.THRESHOLD_CRITICAL_PERCENT:
            level = AlertLevel.CRITICAL
        elif utilization >= settings.THRESHOLD_WARNING_PERCENT:
            level = AlertLevel.WARNING
        else:
            level = AlertLevel.NONE

        if level.value == row.alert_level:
            return []

        result = await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id, MonthlyThreshold.alert_level == row.alert_level)
            .values(alert_level=level.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1 or level.value < row.alert_level:
            return []

        period = format_period(row.year, row.month)
        logger.warning(f"Threshold {period} utilization at {utilization:.2f}% ({level.name.lower()})")
        return [DomainEvent(
            event_type=f"threshold.utilization_{level.name.lower()}",
            entity_type="threshold",
            entity_id=period,
            recipient="admin",
            priority=EventPriority.CRITICAL if level == AlertLevel.CRITICAL else EventPriority.HIGH,
            payload={"period": period, "utilization_percent": round(float(utilization), 2)},
        )]

    # ============ Allocation ============

    @staticmethod
    async def try_allocate(
        db: AsyncSession,
        year: int,
        month: int,
        application_id: int,
        amount: Decimal,
        now: Optional[datetime] = None,
        submitted_at: Optional[datetime] = None,
    ) -> AllocationOutcome:
        """
        Admit `amount` against the period, queue it, or reject it.
        A queued entry waits in order of `submitted_at`, the time the
        application was submitted (defaults to now).

        All-or-nothing per application. Database conflicts on the guarded
        update are retried; exhausting the retries rejects with
        capacity_exhausted. Entries drained from the queue as a side effect
        are returned in `drained` for the caller to register.
        """
        now = now or datetime.utcnow()
        amount = to_money(amount)
        submitted_at = submitted_at or now
        if amount <= 0:
            raise ValidationError("Allocation amount must be greater than zero")

        def outcome(status: AllocationStatus, **kwargs) -> AllocationOutcome:
            return AllocationOutcome(status=status, year=year, month=month, amount=amount, **kwargs)

        # Repeated calls report the existing allocation, wherever it landed
        existing = await ThresholdService.allocation_for(db, application_id)
        if existing is not None:
            found = AllocationOutcome(
                status=AllocationStatus.ADMITTED, year=existing.year, month=existing.month,
                amount=to_money(existing.amount),
            )
            if existing.status == QueueEntryStatus.ADMITTED:
                found.granted_amount = found.amount
            else:
                found.status = AllocationStatus.QUEUED
                found.queue_position = await ThresholdService.queue_position(db, application_id)
            return found

        try:
            threshold = await ThresholdService.get_or_create(db, year, month, now.date())
        except PeriodClosed:
            return outcome(AllocationStatus.REJECTED, reason=RejectionReason.PERIOD_CLOSED)
        threshold_id = threshold.id
        period = threshold.period

        if threshold.status == ThresholdStatus.CLOSED:
            logger.warning(f"Allocation for application {application_id} refused: {period} is closed")
            return outcome(AllocationStatus.REJECTED, reason=RejectionReason.PERIOD_CLOSED)

        for attempt in range(1, settings.ALLOCATION_MAX_RETRIES + 1):
            try:
                if await ThresholdService._decrement(db, threshold_id, amount, now, respect_queue=True):
                    db.add(AllocationQueueEntry(
                        threshold_id=threshold_id,
                        application_id=application_id,
                        amount=amount,
                        submitted_at=submitted_at,
                        carried_over=False,
                        status=QueueEntryStatus.ADMITTED,
                        resolved_at=now,
                    ))
                    events = await ThresholdService._refresh_alerts(db, threshold_id, now)
                    EventOutbox.record(db, events)
                    await db.commit()
                    logger.info(f"Admitted application {application_id} for {amount} in {period}")
                    return outcome(AllocationStatus.ADMITTED, granted_amount=amount, events=events)

                current_status = (await db.execute(
                    select(MonthlyThreshold.status).where(MonthlyThreshold.id == threshold_id)
                )).scalar_one()
                if current_status == ThresholdStatus.CLOSED:
                    await db.commit()
                    logger.warning(f"Allocation for application {application_id} refused: {period} is closed")
                    return outcome(AllocationStatus.REJECTED, reason=RejectionReason.PERIOD_CLOSED)

                await ThresholdService._enqueue(db, threshold_id, application_id, amount, now, submitted_at)
                await db.commit()
                break
            except DBAPIError as exc:
                await db.rollback()
                logger.warning(
                    f"Conflict allocating application {application_id} in {period} "
                    f"(attempt {attempt}/{settings.ALLOCATION_MAX_RETRIES}): {exc.__class__.__name__}"
                )
                await asyncio.sleep(_backoff(attempt))
        else:
            logger.warning(f"Allocation for application {application_id} in {period} gave up under contention")
            return outcome(AllocationStatus.REJECTED, reason=RejectionReason.CAPACITY_EXHAUSTED)

        # Capacity may have been released between the failed guard and the enqueue
        drained = await ThresholdService.drain_queue(db, threshold_id, now)
        others = [d for d in drained if d.application_id != application_id]
        if len(others) != len(drained):
            logger.info(f"Admitted application {application_id} for {amount} in {period} from queue")
            return outcome(AllocationStatus.ADMITTED, granted_amount=amount, drained=others)

        position = await ThresholdService.queue_position(db, application_id)
        logger.info(f"Queued application {application_id} for {amount} in {period} at position {position}")
        return outcome(AllocationStatus.QUEUED, queue_position=position, drained=others)

    @staticmethod
    async def _enqueue(
        db: AsyncSession,
        threshold_id: int,
        application_id: int,
        amount: Decimal,
        now: datetime,
        submitted_at: datetime,
    ) -> None:
        db.add(AllocationQueueEntry(
            threshold_id=threshold_id,
            application_id=application_id,
            amount=amount,
            submitted_at=submitted_at,
            carried_over=False,
            status=QueueEntryStatus.QUEUED,
        ))
        await db.flush()
        await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id)
            .values(
                total_applications_queued=MonthlyThreshold.total_applications_queued + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def queue_position(db: AsyncSession, application_id: int) -> Optional[int]:
        """1-based position of a queued application, None when not queued"""
        entry = aliased(AllocationQueueEntry)
        ahead = aliased(AllocationQueueEntry)
        # Same ordering as QUEUE_ORDER, expressed as "sorts before entry"
        sorts_before = or_(
            and_(ahead.carried_over.is_(True), entry.carried_over.is_(False)),
            and_(
                ahead.carried_over == entry.carried_over,
                or_(
                    ahead.submitted_at < entry.submitted_at,
                    and_(
                        ahead.submitted_at == entry.submitted_at,
                        ahead.application_id < entry.application_id,
                    ),
                ),
            ),
        )
        row = (await db.execute(
            select(entry.id, func.count(ahead.id).label("ahead"))
            .select_from(entry)
            .outerjoin(
                ahead,
                and_(
                    ahead.threshold_id == entry.threshold_id,
                    ahead.status == QueueEntryStatus.QUEUED,
                    sorts_before,
                ),
            )
            .where(
                entry.application_id == application_id,
                entry.status == QueueEntryStatus.QUEUED,
            )
            .group_by(entry.id)
        )).first()
        if row is None:
            return None
        return row.ahead + 1

    # ============ Draining ============

    @staticmethod
    async def _admit_head(
        db: AsyncSession, threshold_id: int, entry_id: int, amount: Decimal, now: datetime
    ) -> Optional[bool]:
        """
        Take one queue entry's capacity and claim the entry in a single
        transaction. True when admitted, False when it does not fit, None
        when another worker claimed it first.

        The decrement only matches while the entry is still waiting, so a
        head that does not fit leaves nothing to undo.
        """
        if not await ThresholdService._decrement(
            db, threshold_id, amount, now, respect_queue=False, queued_entry_id=entry_id
        ):
            still_queued = (await db.execute(
                select(AllocationQueueEntry.id).where(
                    AllocationQueueEntry.id == entry_id,
                    AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
                )
            )).scalar_one_or_none()
            await db.commit()
            return False if still_queued is not None else None

        claimed = await db.execute(
            update(AllocationQueueEntry)
            .where(
                AllocationQueueEntry.id == entry_id,
                AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
            )
            .values(status=QueueEntryStatus.ADMITTED, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            # Claimed by another worker after our decrement matched
            await db.rollback()
            return None

        await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id)
            .values(total_applications_queued=MonthlyThreshold.total_applications_queued - 1)
            .execution_options(synchronize_session=False)
        )
        EventOutbox.record(db, await ThresholdService._refresh_alerts(db, threshold_id, now))
        await db.commit()
        return True

    @staticmethod
    async def drain_queue(
        db: AsyncSession, threshold_id: int, now: Optional[datetime] = None
    ) -> List[DrainedEntry]:
        """
        Admit queued entries head first while they fit. Stops at the first
        entry that does not fit, even if a later, smaller one would.
        """
        now = now or datetime.utcnow()
        period = (await db.execute(
            select(MonthlyThreshold.year, MonthlyThreshold.month).where(MonthlyThreshold.id == threshold_id)
        )).one()
        drained = []

        while True:
            head = (await db.execute(
                select(AllocationQueueEntry.id, AllocationQueueEntry.application_id, AllocationQueueEntry.amount)
                .where(
                    AllocationQueueEntry.threshold_id == threshold_id,
                    AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
                )
                .order_by(*QUEUE_ORDER)
                .limit(1)
            )).first()
            if head is None:
                break

            entry_id, application_id, amount = head.id, head.application_id, to_money(head.amount)
            admitted = None
            for attempt in range(1, settings.ALLOCATION_MAX_RETRIES + 1):
                try:
                    admitted = await ThresholdService._admit_head(db, threshold_id, entry_id, amount, now)
                    break
                except DBAPIError as exc:
                    await db.rollback()
                    logger.warning(
                        f"Conflict draining application {application_id} (attempt {attempt}): "
                        f"{exc.__class__.__name__}"
                    )
                    await asyncio.sleep(_backoff(attempt))
            else:
                logger.warning(f"Draining {format_period(period.year, period.month)} stopped under contention")
                break

            if admitted is None:
                continue
            if not admitted:
                break
            drained.append(DrainedEntry(application_id, amount, period.year, period.month))
            logger.info(
                f"Drained application {application_id} for {amount} in {format_period(period.year, period.month)}"
            )

        return drained

    # ============ Release / withdrawal ============

    @staticmethod
    async def allocation_for(db: AsyncSession, application_id: int):
        """Active allocation row (queued or admitted) for an application, with its period"""
        result = await db.execute(
            select(
                AllocationQueueEntry.id,
                AllocationQueueEntry.threshold_id,
                AllocationQueueEntry.amount,
                AllocationQueueEntry.status,
                MonthlyThreshold.year,
                MonthlyThreshold.month,
            )
            .join(MonthlyThreshold, MonthlyThreshold.id == AllocationQueueEntry.threshold_id)
            .where(
                AllocationQueueEntry.application_id == application_id,
                AllocationQueueEntry.status.in_([QueueEntryStatus.QUEUED, QueueEntryStatus.ADMITTED]),
            )
            .order_by(AllocationQueueEntry.id.desc())
            .limit(1)
        )
        return result.first()

    @staticmethod
    async def release(
        db: AsyncSession,
        application_id: int,
        was_registered: bool = True,
        now: Optional[datetime] = None,
    ) -> List[DrainedEntry]:
        """
        Hand an application's admitted capacity back to its period (a loan
        cancelled before disbursement) and drain the queue. Releasing twice
        is a no-op. Closed periods keep their totals.
        """
        now = now or datetime.utcnow()
        allocation = await ThresholdService.allocation_for(db, application_id)
        if allocation is None or allocation.status != QueueEntryStatus.ADMITTED:
            logger.info(f"Nothing to release for application {application_id}")
            return []
        threshold_id = allocation.threshold_id
        amount = to_money(allocation.amount)
        period = format_period(allocation.year, allocation.month)

        values = {
            "allocated_amount": MonthlyThreshold.allocated_amount - amount,
            "remaining_amount": MonthlyThreshold.remaining_amount + amount,
            "version": MonthlyThreshold.version + 1,
            "updated_at": now,
        }
        if was_registered:
            values["total_applications_registered"] = MonthlyThreshold.total_applications_registered - 1

        for attempt in range(1, settings.ALLOCATION_MAX_RETRIES + 1):
            try:
                claimed = await db.execute(
                    update(AllocationQueueEntry)
                    .where(
                        AllocationQueueEntry.id == allocation.id,
                        AllocationQueueEntry.status == QueueEntryStatus.ADMITTED,
                    )
                    .values(status=QueueEntryStatus.RELEASED, resolved_at=now)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    await db.rollback()
                    return []

                result = await db.execute(
                    update(MonthlyThreshold)
                    .where(
                        MonthlyThreshold.id == threshold_id,
                        MonthlyThreshold.status != ThresholdStatus.CLOSED,
                        MonthlyThreshold.allocated_amount >= amount,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await db.commit()
                    logger.warning(f"Capacity of application {application_id} not returned: {period} is closed")
                    return []

                await db.execute(
                    update(MonthlyThreshold)
                    .where(
                        MonthlyThreshold.id == threshold_id,
                        MonthlyThreshold.status == ThresholdStatus.EXHAUSTED,
                        MonthlyThreshold.remaining_amount > 0,
                    )
                    .values(status=ThresholdStatus.OPEN)
                    .execution_options(synchronize_session=False)
                )
                await ThresholdService._refresh_alerts(db, threshold_id, now)
                await db.commit()
                break
            except DBAPIError as exc:
                await db.rollback()
                logger.warning(f"Conflict releasing capacity (attempt {attempt}): {exc.__class__.__name__}")
                await asyncio.sleep(_backoff(attempt))
        else:
            raise ConcurrencyConflict(f"Could not release capacity to {period}")

        logger.info(f"Released {amount} of application {application_id} back to {period}")
        return await ThresholdService.drain_queue(db, threshold_id, now)

    @staticmethod
    async def mark_registered(db: AsyncSession, year: int, month: int) -> None:
        """Count a registration against its period; the caller commits"""
        await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.year == year, MonthlyThreshold.month == month)
            .values(total_applications_registered=MonthlyThreshold.total_applications_registered + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def withdraw_queued(
        db: AsyncSession, application_id: int, now: Optional[datetime] = None
    ) -> Tuple[bool, List[DrainedEntry]]:
        """Remove a waiting application; entries behind it may now fit"""
        now = now or datetime.utcnow()
        threshold_id = (await db.execute(
            select(AllocationQueueEntry.threshold_id).where(
                AllocationQueueEntry.application_id == application_id,
                AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
            )
        )).scalar_one_or_none()
        if threshold_id is None:
            return False, []

        result = await db.execute(
            update(AllocationQueueEntry)
            .where(
                AllocationQueueEntry.application_id == application_id,
                AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
            )
            .values(status=QueueEntryStatus.WITHDRAWN, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            return False, []
        await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id)
            .values(total_applications_queued=MonthlyThreshold.total_applications_queued - 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(f"Withdrew application {application_id} from the allocation queue")
        return True, await ThresholdService.drain_queue(db, threshold_id, now)

    # ============ Administration ============

    @staticmethod
    async def adjust_maximum(
        db: AsyncSession,
        year: int,
        month: int,
        maximum_amount: Decimal,
        expected_version: Optional[int] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[MonthlyThreshold, List[DrainedEntry]]:
        """
        Change a period's ceiling under optimistic concurrency.
        The new ceiling may not drop below what is already allocated.
        """
        now = now or datetime.utcnow()
        maximum_amount = to_money(maximum_amount)
        if maximum_amount <= 0:
            raise ValidationError("Maximum amount must be greater than zero")
        if maximum_amount > to_money(settings.MAX_MONTHLY_THRESHOLD):
            raise ValidationError(f"Maximum amount cannot exceed {to_money(settings.MAX_MONTHLY_THRESHOLD)}")

        threshold = await ThresholdService.get_or_create(db, year, month, now.date())
        threshold_id, period = threshold.id, threshold.period

        for attempt in range(1, settings.ALLOCATION_MAX_RETRIES + 1):
            row = (await db.execute(
                select(MonthlyThreshold.status, MonthlyThreshold.version, MonthlyThreshold.allocated_amount)
                .where(MonthlyThreshold.id == threshold_id)
            )).one()
            if row.status == ThresholdStatus.CLOSED:
                raise PeriodClosed(f"Threshold {period} is closed")
            if expected_version is not None and row.version != expected_version:
                raise ConcurrencyConflict(
                    f"Threshold {period} changed (version {row.version}, expected {expected_version})"
                )
            allocated = to_money(row.allocated_amount)
            if maximum_amount < allocated:
                raise ValidationError(
                    f"Maximum {maximum_amount} is below the {allocated} already allocated in {period}"
                )

            remaining = maximum_amount - allocated
            values = {
                "maximum_amount": maximum_amount,
                "remaining_amount": remaining,
                "status": ThresholdStatus.EXHAUSTED if remaining <= 0 else ThresholdStatus.OPEN,
                "version": MonthlyThreshold.version + 1,
                "updated_at": now,
            }
            if notes is not None:
                values["notes"] = notes

            result = await db.execute(
                update(MonthlyThreshold)
                .where(MonthlyThreshold.id == threshold_id, MonthlyThreshold.version == row.version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                EventOutbox.record(db, await ThresholdService._refresh_alerts(db, threshold_id, now))
                await db.commit()
                logger.info(f"Threshold {period} maximum set to {maximum_amount}")
                break
            await db.rollback()
            logger.warning(f"Version conflict adjusting {period} (attempt {attempt})")
        else:
            raise ConcurrencyConflict(f"Threshold {period} is being modified concurrently")

        drained = await ThresholdService.drain_queue(db, threshold_id, now)
        return await ThresholdService.load_by_id(db, threshold_id), drained

    @staticmethod
    async def close(
        db: AsyncSession, threshold_id: int, closed_by: str, now: Optional[datetime] = None
    ) -> bool:
        """Close a period for good; the caller commits"""
        result = await db.execute(
            update(MonthlyThreshold)
            .where(MonthlyThreshold.id == threshold_id, MonthlyThreshold.status != ThresholdStatus.CLOSED)
            .values(
                status=ThresholdStatus.CLOSED,
                closed_at=now or datetime.utcnow(),
                closed_by=closed_by,
                version=MonthlyThreshold.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ============ Reporting ============

    @staticmethod
    async def list_queue(db: AsyncSession, year: int, month: int) -> List[AllocationQueueEntry]:
        threshold = await ThresholdService.get_threshold(db, year, month)
        result = await db.execute(
            select(AllocationQueueEntry)
            .where(
                AllocationQueueEntry.threshold_id == threshold.id,
                AllocationQueueEntry.status == QueueEntryStatus.QUEUED,
            )
            .order_by(*QUEUE_ORDER)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def active_alerts(db: AsyncSession) -> List[MonthlyThreshold]:
        result = await db.execute(
            select(MonthlyThreshold)
            .where(
                MonthlyThreshold.status != ThresholdStatus.CLOSED,
                MonthlyThreshold.alert_level >= AlertLevel.WARNING.value,
            )
            .order_by(MonthlyThreshold.year, MonthlyThreshold.month)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def yearly_report(db: AsyncSession, year: int) -> dict:
        result = await db.execute(
            select(MonthlyThreshold)
            .where(MonthlyThreshold.year == year)
            .order_by(MonthlyThreshold.month)
            .execution_options(populate_existing=True)
        )
        thresholds = list(result.scalars().all())
        total_maximum = sum((Decimal(t.maximum_amount) for t in thresholds), Decimal("0.00"))
        total_allocated = sum((Decimal(t.allocated_amount) for t in thresholds), Decimal("0.00"))
        return {
            "year": year,
            "total_maximum": to_money(total_maximum),
            "total_allocated": to_money(total_allocated),
            "average_utilization_percent": (
                round(float(total_allocated / total_maximum * 100), 2) if total_maximum else 0.0
            ),
            "total_registered": sum(t.total_applications_registered for t in thresholds),
            "months": thresholds,
        }
