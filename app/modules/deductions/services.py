"""
Payroll deductions: the expected schedule per loan, uploads of what payroll
actually deducted, and reconciliation of the two.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterator, List, Optional, Tuple
import csv
import hashlib
import io
import logging
import time

from app.core.config import settings
from app.core.exceptions import InvalidStateTransition, NotFoundError, ReconciliationMismatch, ValidationError
from app.modules.deductions.models import (
    DeductionScheduleRow, DeductionUploadBatch, ActualDeduction, DeductionReconciliation,
    UploadBatchStatus, ReconciliationStatus
)
from app.modules.loans.calculations import add_months, build_amortization, calculate_emi, to_money
from app.modules.loans.periods import format_period
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox
from app.modules.register.models import LoanRegister, LoanStatus

logger = logging.getLogger(__name__)

SCHEDULED_LOAN_STATUSES = (LoanStatus.REGISTERED, LoanStatus.ACTIVE)
UPLOAD_COLUMNS = ("loan_reference", "amount", "source_reference")


def classify_deduction(expected: Decimal, actual: Decimal, tolerance: Decimal) -> ReconciliationStatus:
    """Compare what was due with what payroll deducted"""
    if abs(actual - expected) <= tolerance:
        return ReconciliationStatus.MATCHED
    if actual <= 0:
        return ReconciliationStatus.UNMATCHED
    if actual < expected:
        return ReconciliationStatus.PARTIALLY_PAID
    return ReconciliationStatus.OVERPAID


# ============ Schedule ============

class DeductionScheduleService:

    @staticmethod
    async def current_rows(db: AsyncSession, loan_id: int) -> List[DeductionScheduleRow]:
        result = await db.execute(
            select(DeductionScheduleRow)
            .where(DeductionScheduleRow.loan_id == loan_id, DeductionScheduleRow.superseded.is_(False))
            .order_by(DeductionScheduleRow.installment_number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def ensure_schedule(db: AsyncSession, loan: LoanRegister) -> List[DeductionScheduleRow]:
        """
        Generate the loan's schedule once. Installments fall due monthly
        from the month after disbursement (registration if not yet
        disbursed). Existing rows are returned as they are.
        """
        loan_id, reference = loan.id, loan.reference
        rows = await DeductionScheduleService.current_rows(db, loan_id)
        if rows:
            return rows

        start = loan.disbursement_date or loan.registration_date
        installments = build_amortization(
            Decimal(loan.principal), Decimal(loan.interest_rate), loan.tenor_months, add_months(start, 1)
        )
        for installment in installments:
            db.add(DeductionScheduleRow(
                loan_id=loan_id,
                installment_number=installment.number,
                period_year=installment.due_date.year,
                period_month=installment.due_date.month,
                due_date=installment.due_date,
                amount=installment.amount,
                principal_component=installment.principal_component,
                interest_component=installment.interest_component,
                opening_balance=installment.opening_balance,
                closing_balance=installment.closing_balance,
                version=1,
                superseded=False,
            ))
        try:
            await db.commit()
            logger.info(f"Generated {len(installments)} scheduled deductions for {reference}")
        except IntegrityError:
            # Generated concurrently
            await db.rollback()
        return await DeductionScheduleService.current_rows(db, loan_id)

    @staticmethod
    async def align_to_disbursement(db: AsyncSession, loan: LoanRegister) -> List[DeductionScheduleRow]:
        """
        Schedule a freshly disbursed loan from its disbursement date.
        A schedule generated before the payout (from the registration date)
        is superseded and rewritten at the next version, provided none of
        its installments has been reconciled yet.
        """
        loan_id, reference = loan.id, loan.reference
        rows = await DeductionScheduleService.current_rows(db, loan_id)
        if not rows or loan.disbursement_date is None:
            return await DeductionScheduleService.ensure_schedule(db, loan)

        first_due = add_months(loan.disbursement_date, 1)
        if rows[0].due_date == first_due:
            return rows

        reconciled = (await db.execute(
            select(func.count(DeductionReconciliation.id))
            .where(DeductionReconciliation.schedule_row_id.in_([row.id for row in rows]))
        )).scalar_one()
        if reconciled:
            logger.warning(f"Schedule of {reference} already reconciled; keeping it as generated")
            return rows

        version = max(row.version for row in rows) + 1
        await db.execute(
            update(DeductionScheduleRow)
            .where(DeductionScheduleRow.loan_id == loan_id, DeductionScheduleRow.superseded.is_(False))
            .values(superseded=True)
            .execution_options(synchronize_session=False)
        )
        installments = build_amortization(
            Decimal(loan.principal), Decimal(loan.interest_rate), loan.tenor_months, first_due
        )
        for installment in installments:
            db.add(DeductionScheduleRow(
                loan_id=loan_id,
                installment_number=installment.number,
                period_year=installment.due_date.year,
                period_month=installment.due_date.month,
                due_date=installment.due_date,
                amount=installment.amount,
                principal_component=installment.principal_component,
                interest_component=installment.interest_component,
                opening_balance=installment.opening_balance,
                closing_balance=installment.closing_balance,
                version=version,
                superseded=False,
            ))
        await db.commit()
        logger.info(f"Rescheduled {reference} from disbursement on {loan.disbursement_date} (version {version})")
        return await DeductionScheduleService.current_rows(db, loan_id)

    @staticmethod
    async def generate_for_period(db: AsyncSession, year: int, month: int) -> List[dict]:
        """Make sure every live loan has a schedule, then list what is due in the period"""
        loan_ids = (await db.execute(
            select(LoanRegister.id).where(LoanRegister.status.in_(SCHEDULED_LOAN_STATUSES))
        )).scalars().all()
        for loan_id in list(loan_ids):
            loan = await db.get(LoanRegister, loan_id, populate_existing=True)
            await DeductionScheduleService.ensure_schedule(db, loan)

        result = await db.execute(
            select(DeductionScheduleRow, LoanRegister.reference, LoanRegister.member_id)
            .join(LoanRegister, LoanRegister.id == DeductionScheduleRow.loan_id)
            .where(
                DeductionScheduleRow.period_year == year,
                DeductionScheduleRow.period_month == month,
                DeductionScheduleRow.superseded.is_(False),
                LoanRegister.status.in_(SCHEDULED_LOAN_STATUSES),
            )
            .order_by(LoanRegister.reference)
        )
        return [
            {
                "loan_reference": reference,
                "member_id": member_id,
                "installment_number": row.installment_number,
                "due_date": row.due_date,
                "amount": to_money(row.amount),
            }
            for row, reference, member_id in result.all()
        ]

    @staticmethod
    def to_csv(deductions: List[dict]) -> Iterator[str]:
        """Payroll export, one line per expected deduction"""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["loan_reference", "member_id", "installment_number", "due_date", "amount"])
        yield buffer.getvalue()
        for item in deductions:
            buffer.seek(0)
            buffer.truncate(0)
            writer.writerow([
                item["loan_reference"],
                item["member_id"],
                item["installment_number"],
                item["due_date"].isoformat(),
                f"{item['amount']:.2f}",
            ])
            yield buffer.getvalue()

    @staticmethod
    async def restructure(
        db: AsyncSession, loan_id: int, tenor_months: int, now: Optional[datetime] = None
    ) -> Tuple[int, Decimal, Decimal, List[DeductionScheduleRow]]:
        """
        Spread the outstanding balance over `tenor_months` new installments.
        Rows that were already reconciled are kept; the unreconciled tail is
        superseded and rewritten at the next version.
        """
        now = now or datetime.utcnow()
        if tenor_months <= 0:
            raise ValidationError("Tenor must be at least one month")

        loan = (await db.execute(
            select(LoanRegister).where(LoanRegister.id == loan_id).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        if loan.status not in SCHEDULED_LOAN_STATUSES:
            raise InvalidStateTransition(f"Loan {loan.reference} is {loan.status.value} and cannot be restructured")

        reference, rate, member_id = loan.reference, Decimal(loan.interest_rate), loan.member_id
        rows = await DeductionScheduleService.ensure_schedule(db, loan)
        reconciled_ids = set((await db.execute(
            select(DeductionReconciliation.schedule_row_id)
            .where(DeductionReconciliation.schedule_row_id.in_([row.id for row in rows]))
        )).scalars().all())

        kept = [row for row in rows if row.id in reconciled_ids]
        replaced = [row for row in rows if row.id not in reconciled_ids]
        if not replaced:
            raise InvalidStateTransition(f"Loan {reference} has no unreconciled installments to restructure")

        last_kept = kept[-1] if kept else None
        outstanding = to_money(replaced[0].opening_balance)
        first_due = add_months(last_kept.due_date, 1) if last_kept else replaced[0].due_date
        first_number = (last_kept.installment_number + 1) if last_kept else 1
        version = max(row.version for row in rows) + 1

        await db.execute(
            update(DeductionScheduleRow)
            .where(
                DeductionScheduleRow.id.in_([row.id for row in replaced]),
                DeductionScheduleRow.superseded.is_(False),
            )
            .values(superseded=True)
            .execution_options(synchronize_session=False)
        )

        installments = build_amortization(outstanding, rate, tenor_months, first_due)
        for installment in installments:
            db.add(DeductionScheduleRow(
                loan_id=loan_id,
                installment_number=first_number + installment.number - 1,
                period_year=installment.due_date.year,
                period_month=installment.due_date.month,
                due_date=installment.due_date,
                amount=installment.amount,
                principal_component=installment.principal_component,
                interest_component=installment.interest_component,
                opening_balance=installment.opening_balance,
                closing_balance=installment.closing_balance,
                version=version,
                superseded=False,
            ))

        emi = calculate_emi(outstanding, rate, tenor_months)
        await db.execute(
            update(LoanRegister)
            .where(LoanRegister.id == loan_id)
            .values(
                tenor_months=len(kept) + tenor_months,
                monthly_emi=emi,
                maturity_date=installments[-1].due_date,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        EventOutbox.record(db, [DomainEvent(
            event_type="loan.restructured",
            entity_type="loan",
            entity_id=reference,
            recipient=member_id,
            payload={"version": version, "outstanding_balance": outstanding, "tenor_months": tenor_months},
        )])
        await db.commit()
        logger.info(f"Restructured {reference}: {outstanding} over {tenor_months} months (version {version})")
        return version, outstanding, emi, await DeductionScheduleService.current_rows(db, loan_id)


# ============ Upload ============

@dataclass
class ParsedRow:
    row_number: int
    loan_reference: str
    amount: Decimal
    source_reference: Optional[str]


@dataclass
class UploadResult:
    batch: DeductionUploadBatch
    inserted_rows: int
    resumed: bool


def parse_deduction_csv(content: bytes) -> Tuple[List[ParsedRow], List[dict]]:
    """Rows are numbered from 1 after the header; bad rows are reported, not fatal"""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Deduction file must be UTF-8 encoded CSV")

    reader = csv.DictReader(io.StringIO(text))
    missing = [column for column in UPLOAD_COLUMNS[:2] if column not in (reader.fieldnames or [])]
    if missing:
        raise ValidationError(f"Deduction file is missing columns: {', '.join(missing)}")

    rows, errors = [], []
    for number, record in enumerate(reader, start=1):
        reference = (record.get("loan_reference") or "").strip()
        try:
            amount = to_money(Decimal((record.get("amount") or "").strip()))
        except InvalidOperation:
            errors.append({"row": number, "error": f"invalid amount '{record.get('amount')}'"})
            continue
        if not reference:
            errors.append({"row": number, "error": "missing loan_reference"})
            continue
        if amount < 0:
            errors.append({"row": number, "error": "negative amount"})
            continue
        rows.append(ParsedRow(number, reference, amount, (record.get("source_reference") or "").strip() or None))
    return rows, errors


class DeductionUploadService:

    @staticmethod
    async def _get_or_create_batch(
        db: AsyncSession, year: int, month: int, checksum: str, filename: Optional[str], total_rows: int, errors: list
    ) -> Tuple[DeductionUploadBatch, bool]:
        query = (
            select(DeductionUploadBatch)
            .where(
                DeductionUploadBatch.period_year == year,
                DeductionUploadBatch.period_month == month,
                DeductionUploadBatch.checksum == checksum,
            )
            .execution_options(populate_existing=True)
        )
        batch = (await db.execute(query)).scalar_one_or_none()
        if batch is not None:
            return batch, True

        db.add(DeductionUploadBatch(
            period_year=year,
            period_month=month,
            checksum=checksum,
            filename=filename,
            total_rows=total_rows,
            last_committed_row=0,
            status=UploadBatchStatus.PROCESSING,
            error_rows=errors,
        ))
        try:
            await db.commit()
            return (await db.execute(query)).scalar_one(), False
        except IntegrityError:
            await db.rollback()
            return (await db.execute(query)).scalar_one(), True

    @staticmethod
    async def upload(
        db: AsyncSession,
        year: int,
        month: int,
        content: bytes,
        filename: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> UploadResult:
        """
        Store a payroll deduction file.

        The file is identified by its checksum and written in chunks; each
        chunk commits together with the batch's `last_committed_row`, so
        uploading the same file again resumes where the last attempt
        stopped. Past the deadline the batch is left partial.
        """
        timeout_seconds = settings.RECONCILIATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout_seconds
        chunk_size = max(1, settings.UPLOAD_COMMIT_CHUNK_SIZE)

        checksum = hashlib.sha256(content).hexdigest()
        rows, errors = parse_deduction_csv(content)
        total_rows = len(rows) + len(errors)
        batch, resumed = await DeductionUploadService._get_or_create_batch(
            db, year, month, checksum, filename, total_rows, errors
        )
        batch_id = batch.id
        if batch.status == UploadBatchStatus.COMPLETED:
            logger.info(f"Deduction file {checksum[:12]} for {format_period(year, month)} already processed")
            return UploadResult(batch=batch, inserted_rows=0, resumed=True)

        references = {row.loan_reference for row in rows}
        loan_ids = dict((await db.execute(
            select(LoanRegister.reference, LoanRegister.id).where(LoanRegister.reference.in_(references))
        )).all()) if references else {}

        committed = batch.last_committed_row
        pending = [row for row in rows if row.row_number > committed]
        inserted = 0

        for start in range(0, len(pending), chunk_size):
            if time.monotonic() > deadline:
                await DeductionUploadService._finish(db, batch_id, UploadBatchStatus.PARTIAL)
                logger.warning(
                    f"Deduction upload {checksum[:12]} stopped at row {committed} of {total_rows}: deadline reached"
                )
                return UploadResult(
                    batch=await DeductionUploadService.get_batch(db, batch_id), inserted_rows=inserted, resumed=resumed
                )

            chunk = pending[start:start + chunk_size]
            for row in chunk:
                db.add(ActualDeduction(
                    batch_id=batch_id,
                    row_number=row.row_number,
                    loan_reference=row.loan_reference,
                    loan_id=loan_ids.get(row.loan_reference),
                    period_year=year,
                    period_month=month,
                    amount=row.amount,
                    source_reference=row.source_reference,
                ))
            last_row = chunk[-1].row_number
            result = await db.execute(
                update(DeductionUploadBatch)
                .where(DeductionUploadBatch.id == batch_id, DeductionUploadBatch.last_committed_row == committed)
                .values(last_committed_row=last_row)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another upload of the same file is ahead of this one
                await db.rollback()
                logger.warning(f"Deduction upload {checksum[:12]} is being processed concurrently")
                return UploadResult(
                    batch=await DeductionUploadService.get_batch(db, batch_id), inserted_rows=inserted, resumed=True
                )
            await db.commit()
            committed = last_row
            inserted += len(chunk)

        await DeductionUploadService._finish(db, batch_id, UploadBatchStatus.COMPLETED)
        logger.info(
            f"Deduction upload {checksum[:12]} for {format_period(year, month)}: "
            f"{inserted} rows stored, {len(errors)} rejected"
        )
        return UploadResult(
            batch=await DeductionUploadService.get_batch(db, batch_id), inserted_rows=inserted, resumed=resumed
        )

    @staticmethod
    async def _finish(db: AsyncSession, batch_id: int, status: UploadBatchStatus) -> None:
        values = {"status": status}
        if status == UploadBatchStatus.COMPLETED:
            values["completed_at"] = datetime.utcnow()
        await db.execute(
            update(DeductionUploadBatch)
            .where(DeductionUploadBatch.id == batch_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def get_batch(db: AsyncSession, batch_id: int) -> DeductionUploadBatch:
        result = await db.execute(
            select(DeductionUploadBatch)
            .where(DeductionUploadBatch.id == batch_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()


# ============ Reconciliation ============

@dataclass
class ReconciliationResult:
    period: str
    items: List[dict] = field(default_factory=list)
    mismatches: List[dict] = field(default_factory=list)
    total_expected: Decimal = Decimal("0.00")
    total_actual: Decimal = Decimal("0.00")

    @property
    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ReconciliationStatus}
        for item in self.items:
            counts[item["status"].value] += 1
        return counts


def _mismatch(reference: str, amount: Decimal, reason: str) -> dict:
    error = ReconciliationMismatch(f"{reference}: {reason}")
    return {"code": error.code, "loan_reference": reference, "amount": amount, "reason": error.message}


class ReconciliationService:

    @staticmethod
    async def reconcile(
        db: AsyncSession, year: int, month: int, tolerance: Optional[Decimal] = None, now: Optional[datetime] = None
    ) -> ReconciliationResult:
        """
        Compare the period's schedule with the uploaded actuals.

        One result per schedule row, upserted, so running it again after
        more uploads simply refreshes the statuses. Deductions that match
        no scheduled row are reported as mismatches.
        """
        now = now or datetime.utcnow()
        tolerance = to_money(settings.RECONCILIATION_TOLERANCE if tolerance is None else tolerance)
        period = format_period(year, month)

        scheduled = (await db.execute(
            select(DeductionScheduleRow, LoanRegister.reference)
            .join(LoanRegister, LoanRegister.id == DeductionScheduleRow.loan_id)
            .where(
                DeductionScheduleRow.period_year == year,
                DeductionScheduleRow.period_month == month,
                DeductionScheduleRow.superseded.is_(False),
                LoanRegister.status != LoanStatus.CANCELLED,
            )
            .order_by(LoanRegister.reference)
        )).all()

        actual_by_loan = {
            loan_id: to_money(total)
            for loan_id, total in (await db.execute(
                select(ActualDeduction.loan_id, func.sum(ActualDeduction.amount))
                .where(
                    ActualDeduction.period_year == year,
                    ActualDeduction.period_month == month,
                    ActualDeduction.loan_id.is_not(None),
                )
                .group_by(ActualDeduction.loan_id)
            )).all()
        }

        result = ReconciliationResult(period=period)
        scheduled_loans = set()
        for row, reference in scheduled:
            expected = to_money(row.amount)
            actual = actual_by_loan.get(row.loan_id, Decimal("0.00"))
            status = classify_deduction(expected, actual, tolerance)
            variance = actual - expected
            scheduled_loans.add(row.loan_id)

            values = {
                "loan_id": row.loan_id,
                "period_year": year,
                "period_month": month,
                "expected_amount": expected,
                "actual_amount": actual,
                "variance": variance,
                "status": status,
                "reconciled_at": now,
            }
            updated = await db.execute(
                update(DeductionReconciliation)
                .where(DeductionReconciliation.schedule_row_id == row.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                db.add(DeductionReconciliation(schedule_row_id=row.id, **values))

            result.items.append({
                "schedule_row_id": row.id,
                "loan_reference": reference,
                "expected_amount": expected,
                "actual_amount": actual,
                "variance": variance,
                "status": status,
            })
            result.total_expected += expected
            result.total_actual += actual

        try:
            await db.commit()
        except IntegrityError:
            # A concurrent run stored results for the same rows first
            await db.rollback()
            logger.warning(f"Concurrent reconciliation of {period}; keeping the stored results")

        unknown = (await db.execute(
            select(ActualDeduction.loan_reference, func.sum(ActualDeduction.amount))
            .where(
                ActualDeduction.period_year == year,
                ActualDeduction.period_month == month,
                ActualDeduction.loan_id.is_(None),
            )
            .group_by(ActualDeduction.loan_reference)
            .order_by(ActualDeduction.loan_reference)
        )).all()
        for reference, total in unknown:
            result.mismatches.append(_mismatch(reference, to_money(total), "unknown loan reference"))
            result.total_actual += to_money(total)

        orphan_ids = [loan_id for loan_id in actual_by_loan if loan_id not in scheduled_loans]
        if orphan_ids:
            references = dict((await db.execute(
                select(LoanRegister.id, LoanRegister.reference).where(LoanRegister.id.in_(orphan_ids))
            )).all())
            for loan_id in sorted(orphan_ids):
                amount = actual_by_loan[loan_id]
                result.mismatches.append(_mismatch(references[loan_id], amount, f"no deduction scheduled in {period}"))
                result.total_actual += amount

        logger.info(f"Reconciled {period}: {result.counts}, {len(result.mismatches)} mismatches")
        if result.mismatches:
            logger.warning(f"Deductions in {period} not matching any schedule row: {len(result.mismatches)}")
        return result

    @staticmethod
    async def status_for_rows(db: AsyncSession, row_ids: List[int]) -> Dict[int, ReconciliationStatus]:
        if not row_ids:
            return {}
        result = await db.execute(
            select(DeductionReconciliation.schedule_row_id, DeductionReconciliation.status)
            .where(DeductionReconciliation.schedule_row_id.in_(row_ids))
        )
        return dict(result.all())
