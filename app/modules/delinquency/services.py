"""
Delinquency monitoring.

Reads the reconciled schedule and classifies each live loan by how many
installments in a row, counting back from the latest one past its grace
period, were not fully deducted. The schedule itself is never changed.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import logging

from app.core.config import settings
from app.modules.deductions.models import DeductionScheduleRow, DeductionReconciliation, ReconciliationStatus
from app.modules.delinquency.models import LoanDelinquencyRecord
from app.modules.loans.calculations import to_money
from app.modules.notifications.models import EventPriority
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox
from app.modules.register.models import LoanRegister, LoanStatus, DelinquencyStatus

logger = logging.getLogger(__name__)

PAID_STATUSES = (ReconciliationStatus.MATCHED, ReconciliationStatus.OVERPAID)
MONITORED_LOAN_STATUSES = (LoanStatus.REGISTERED, LoanStatus.ACTIVE)


def count_consecutive_missed(statuses: Sequence[Optional[ReconciliationStatus]]) -> int:
    """
    Statuses of installments past their grace period, newest first.
    None means never reconciled and counts as missed.
    """
    missed = 0
    for status in statuses:
        if status in PAID_STATUSES:
            break
        missed += 1
    return missed


def classify(consecutive_missed: int) -> DelinquencyStatus:
    if consecutive_missed >= settings.DEFAULT_CANDIDATE_AFTER_MISSED:
        return DelinquencyStatus.DEFAULT_CANDIDATE
    if consecutive_missed >= settings.DELINQUENT_AFTER_MISSED:
        return DelinquencyStatus.DELINQUENT
    if consecutive_missed >= settings.WATCH_AFTER_MISSED and consecutive_missed > 0:
        return DelinquencyStatus.WATCH
    return DelinquencyStatus.CURRENT


@dataclass
class LoanAssessment:
    loan_id: int
    consecutive_missed: int
    days_overdue: int
    overdue_amount: Decimal
    status: DelinquencyStatus


@dataclass
class ScanResult:
    check_date: date
    checked: int = 0
    changed: List[LoanDelinquencyRecord] = field(default_factory=list)

    def __str__(self):
        return f"checked={self.checked} changed={len(self.changed)} on {self.check_date}"


class DelinquencyService:

    @staticmethod
    async def assess(db: AsyncSession, loan_id: int, today: date) -> LoanAssessment:
        """Classify one loan from its schedule rows past due plus grace"""
        cutoff = today - timedelta(days=settings.DELINQUENCY_GRACE_DAYS)
        result = await db.execute(
            select(
                DeductionScheduleRow.due_date,
                DeductionScheduleRow.amount,
                DeductionReconciliation.status,
                DeductionReconciliation.actual_amount,
            )
            .outerjoin(
                DeductionReconciliation,
                DeductionReconciliation.schedule_row_id == DeductionScheduleRow.id,
            )
            .where(
                DeductionScheduleRow.loan_id == loan_id,
                DeductionScheduleRow.superseded.is_(False),
                DeductionScheduleRow.due_date < cutoff,
            )
            .order_by(DeductionScheduleRow.due_date.desc())
        )
        rows = result.all()

        missed = count_consecutive_missed([row.status for row in rows])
        overdue = Decimal("0.00")
        for row in rows[:missed]:
            paid = to_money(row.actual_amount) if row.actual_amount is not None else Decimal("0.00")
            overdue += max(to_money(row.amount) - paid, Decimal("0.00"))
        days_overdue = (today - rows[missed - 1].due_date).days if missed else 0

        return LoanAssessment(
            loan_id=loan_id,
            consecutive_missed=missed,
            days_overdue=days_overdue,
            overdue_amount=overdue,
            status=classify(missed),
        )

    @staticmethod
    async def scan(db: AsyncSession, today: Optional[date] = None) -> ScanResult:
        """Reclassify every live loan; only changes are recorded"""
        today = today or date.today()
        scan = ScanResult(check_date=today)

        loans = (await db.execute(
            select(LoanRegister.id, LoanRegister.reference, LoanRegister.member_id, LoanRegister.delinquency_status)
            .where(LoanRegister.status.in_(MONITORED_LOAN_STATUSES))
            .order_by(LoanRegister.id)
        )).all()

        for loan in loans:
            scan.checked += 1
            assessment = await DelinquencyService.assess(db, loan.id, today)
            if assessment.status == loan.delinquency_status:
                continue

            result = await db.execute(
                update(LoanRegister)
                .where(LoanRegister.id == loan.id, LoanRegister.delinquency_status == loan.delinquency_status)
                .values(delinquency_status=assessment.status, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                logger.warning(f"Delinquency of {loan.reference} changed during the scan; skipped")
                continue

            record = LoanDelinquencyRecord(
                loan_id=loan.id,
                check_date=today,
                consecutive_missed=assessment.consecutive_missed,
                days_overdue=assessment.days_overdue,
                overdue_amount=assessment.overdue_amount,
                previous_status=loan.delinquency_status,
                new_status=assessment.status,
            )
            db.add(record)
            escalated = assessment.status in (DelinquencyStatus.DELINQUENT, DelinquencyStatus.DEFAULT_CANDIDATE)
            EventOutbox.record(db, [DomainEvent(
                event_type="loan.delinquency_changed",
                entity_type="loan",
                entity_id=loan.reference,
                recipient=loan.member_id,
                priority=EventPriority.HIGH if escalated else EventPriority.MEDIUM,
                payload={
                    "previous_status": loan.delinquency_status.value,
                    "new_status": assessment.status.value,
                    "consecutive_missed": assessment.consecutive_missed,
                    "overdue_amount": assessment.overdue_amount,
                },
            )])
            await db.commit()
            scan.changed.append(record)
            logger.info(
                f"Loan {loan.reference} delinquency {loan.delinquency_status.value} -> {assessment.status.value} "
                f"({assessment.consecutive_missed} missed)"
            )

        logger.info(f"Delinquency scan: {scan}")
        return scan

    @staticmethod
    async def latest_records(db: AsyncSession, loan_ids: List[int]) -> dict:
        if not loan_ids:
            return {}
        latest = (
            select(LoanDelinquencyRecord.loan_id, func.max(LoanDelinquencyRecord.id).label("record_id"))
            .where(LoanDelinquencyRecord.loan_id.in_(loan_ids))
            .group_by(LoanDelinquencyRecord.loan_id)
            .subquery()
        )
        result = await db.execute(
            select(LoanDelinquencyRecord).join(latest, LoanDelinquencyRecord.id == latest.c.record_id)
        )
        return {record.loan_id: record for record in result.scalars().all()}

    @staticmethod
    async def list_delinquent(
        db: AsyncSession, status: Optional[DelinquencyStatus] = None
    ) -> Tuple[List[dict], int]:
        query = select(LoanRegister).where(
            LoanRegister.status.in_(MONITORED_LOAN_STATUSES),
            LoanRegister.delinquency_status != DelinquencyStatus.CURRENT,
        )
        if status:
            query = query.where(LoanRegister.delinquency_status == status)
        loans = list((await db.execute(
            query.order_by(LoanRegister.reference).execution_options(populate_existing=True)
        )).scalars().all())
        records = await DelinquencyService.latest_records(db, [loan.id for loan in loans])

        items = []
        for loan in loans:
            record = records.get(loan.id)
            items.append({
                "loan_id": loan.id,
                "reference": loan.reference,
                "member_id": loan.member_id,
                "delinquency_status": loan.delinquency_status,
                "consecutive_missed": record.consecutive_missed if record else 0,
                "days_overdue": record.days_overdue if record else 0,
                "overdue_amount": to_money(record.overdue_amount) if record else Decimal("0.00"),
                "last_checked": record.check_date if record else None,
            })
        return items, len(items)

    @staticmethod
    async def summary(db: AsyncSession) -> dict:
        result = await db.execute(
            select(LoanRegister.delinquency_status, func.count(LoanRegister.id), func.sum(LoanRegister.principal))
            .where(LoanRegister.status.in_(MONITORED_LOAN_STATUSES))
            .group_by(LoanRegister.delinquency_status)
        )
        counts = {status.value: 0 for status in DelinquencyStatus}
        at_risk = Decimal("0.00")
        for status, count, principal in result.all():
            counts[status.value] = count
            if status != DelinquencyStatus.CURRENT and principal is not None:
                at_risk += to_money(principal)

        delinquent, _ = await DelinquencyService.list_delinquent(db)
        return {
            "counts": counts,
            "total_overdue_amount": sum((item["overdue_amount"] for item in delinquent), Decimal("0.00")),
            "at_risk_principal": at_risk,
        }
