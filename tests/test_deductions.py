"""
Tests for deduction schedules, payroll uploads and reconciliation
"""
import pytest
from decimal import Decimal
from datetime import date

from sqlalchemy import select, func

from app.core.config import settings
from app.core.exceptions import InvalidStateTransition, ValidationError
from app.modules.deductions.models import (
    ActualDeduction, DeductionReconciliation, ReconciliationStatus, UploadBatchStatus
)
from app.modules.deductions.services import (
    DeductionScheduleService, DeductionUploadService, ReconciliationService,
    classify_deduction, parse_deduction_csv
)
from app.modules.loans.calculations import add_months
from app.modules.register.services import RegistrationService


def payroll_file(*lines) -> bytes:
    body = "\n".join(",".join(str(value) for value in line) for line in lines)
    return f"loan_reference,amount,source_reference\n{body}\n".encode()


@pytest.fixture
async def disbursed_loan(db_session, make_application):
    """120,000 over 12 months, paid out today"""
    application = await make_application(Decimal("120000"), tenor_months=12)
    await RegistrationService.request_registration(db_session, application.id)
    return await RegistrationService.disburse(db_session, application.id, date.today())


@pytest.fixture
async def schedule(db_session, disbursed_loan):
    return await DeductionScheduleService.current_rows(db_session, disbursed_loan.id)


class TestClassification:
    """Tests for comparing expected and actual deductions"""

    @pytest.mark.unit
    @pytest.mark.parametrize("actual,expected_status", [
        ("10661.85", ReconciliationStatus.MATCHED),
        ("10661.84", ReconciliationStatus.MATCHED),
        ("5000.00", ReconciliationStatus.PARTIALLY_PAID),
        ("12000.00", ReconciliationStatus.OVERPAID),
        ("0.00", ReconciliationStatus.UNMATCHED),
    ])
    def test_classify(self, actual, expected_status):
        status = classify_deduction(Decimal("10661.85"), Decimal(actual), Decimal("0.01"))

        assert status == expected_status


class TestCsvParsing:
    """Tests for reading payroll files"""

    @pytest.mark.unit
    def test_bad_rows_are_reported(self):
        content = payroll_file(
            ("LH/2026/001", "100.00", "P1"),
            ("LH/2026/002", "abc", "P2"),
            ("", "50.00", "P3"),
            ("LH/2026/003", "-5", "P4"),
        )

        rows, errors = parse_deduction_csv(content)

        assert [row.loan_reference for row in rows] == ["LH/2026/001"]
        assert [error["row"] for error in errors] == [2, 3, 4]

    @pytest.mark.unit
    def test_missing_columns(self):
        with pytest.raises(ValidationError):
            parse_deduction_csv(b"reference,value\nLH/2026/001,100\n")

    @pytest.mark.unit
    def test_not_utf8(self):
        with pytest.raises(ValidationError):
            parse_deduction_csv("loan_reference,amount\nLH/2026/001,1é\n".encode("latin-1"))


class TestSchedule:
    """Tests for the expected deduction schedule"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_schedule_covers_principal(self, disbursed_loan, schedule):
        assert len(schedule) == 12
        assert [row.installment_number for row in schedule] == list(range(1, 13))
        assert sum(Decimal(row.principal_component) for row in schedule) == Decimal("120000.00")
        assert schedule[0].due_date == add_months(disbursed_loan.disbursement_date, 1)
        assert Decimal(schedule[-1].closing_balance) == Decimal("0.00")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_generation_is_idempotent(self, db_session, disbursed_loan, schedule):
        again = await DeductionScheduleService.ensure_schedule(db_session, disbursed_loan)

        assert [row.id for row in again] == [row.id for row in schedule]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_generate_for_period_and_export(self, db_session, disbursed_loan, schedule):
        first = schedule[0]

        due = await DeductionScheduleService.generate_for_period(db_session, first.period_year, first.period_month)

        assert len(due) == 1
        assert due[0]["loan_reference"] == disbursed_loan.reference
        assert due[0]["installment_number"] == 1

        lines = list(DeductionScheduleService.to_csv(due))
        assert lines[0].startswith("loan_reference,member_id,installment_number")
        assert lines[1].startswith(f"{disbursed_loan.reference},{disbursed_loan.member_id},1,")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_restructure_keeps_reconciled_rows(self, db_session, disbursed_loan, schedule):
        first = schedule[0]
        loan_id = disbursed_loan.id
        await DeductionUploadService.upload(
            db_session, first.period_year, first.period_month,
            payroll_file((disbursed_loan.reference, first.amount, "PAY-1")),
        )
        await ReconciliationService.reconcile(db_session, first.period_year, first.period_month)

        version, outstanding, emi, rows = await DeductionScheduleService.restructure(db_session, loan_id, 6)

        assert version == 2
        assert outstanding == Decimal(first.closing_balance)
        assert len(rows) == 7
        assert rows[0].version == 1
        assert all(row.version == 2 for row in rows[1:])
        assert [row.installment_number for row in rows] == list(range(1, 8))
        assert sum(Decimal(row.principal_component) for row in rows) == Decimal("120000.00")

        loan = await RegistrationService.get_loan(db_session, loan_id)
        assert loan.tenor_months == 7
        assert loan.monthly_emi == emi

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_restructure_rejects_zero_tenor(self, db_session, disbursed_loan):
        with pytest.raises(ValidationError):
            await DeductionScheduleService.restructure(db_session, disbursed_loan.id, 0)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancelled_loan_cannot_be_restructured(self, db_session, make_application):
        application = await make_application(Decimal("120000"))
        outcome = await RegistrationService.request_registration(db_session, application.id)
        loan_id = outcome.loan.id
        await RegistrationService.cancel(db_session, application.id, "Withdrawn")

        with pytest.raises(InvalidStateTransition):
            await DeductionScheduleService.restructure(db_session, loan_id, 6)


class TestUpload:
    """Tests for storing payroll deduction files"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_upload_stores_rows(self, db_session, disbursed_loan, schedule):
        first = schedule[0]
        content = payroll_file(
            (disbursed_loan.reference, first.amount, "PAY-1"),
            ("LH/1999/999", "5000", "PAY-2"),
        )

        result = await DeductionUploadService.upload(
            db_session, first.period_year, first.period_month, content, "payroll.csv"
        )

        assert result.batch.status == UploadBatchStatus.COMPLETED
        assert result.inserted_rows == 2
        assert result.resumed is False
        stored = (await db_session.execute(
            select(ActualDeduction).order_by(ActualDeduction.row_number)
        )).scalars().all()
        assert stored[0].loan_id == disbursed_loan.id
        assert stored[1].loan_id is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_same_file_twice(self, db_session, disbursed_loan, schedule):
        first = schedule[0]
        content = payroll_file((disbursed_loan.reference, first.amount, "PAY-1"))
        await DeductionUploadService.upload(db_session, first.period_year, first.period_month, content)

        again = await DeductionUploadService.upload(db_session, first.period_year, first.period_month, content)

        assert again.inserted_rows == 0
        assert again.resumed is True
        count = (await db_session.execute(select(func.count(ActualDeduction.id)))).scalar()
        assert count == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_partial_upload_resumes(self, db_session, disbursed_loan, schedule, monkeypatch):
        monkeypatch.setattr(settings, "UPLOAD_COMMIT_CHUNK_SIZE", 1)
        first = schedule[0]
        content = payroll_file(
            (disbursed_loan.reference, "5000", "PAY-1"),
            (disbursed_loan.reference, "3000", "PAY-2"),
        )

        stopped = await DeductionUploadService.upload(
            db_session, first.period_year, first.period_month, content, timeout_seconds=-1
        )
        assert stopped.batch.status == UploadBatchStatus.PARTIAL
        assert stopped.inserted_rows == 0

        resumed = await DeductionUploadService.upload(db_session, first.period_year, first.period_month, content)

        assert resumed.resumed is True
        assert resumed.batch.status == UploadBatchStatus.COMPLETED
        assert resumed.batch.last_committed_row == 2
        assert resumed.inserted_rows == 2


class TestReconciliation:
    """Tests for comparing the schedule with payroll"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reconcile_is_repeatable(self, db_session, disbursed_loan, schedule):
        first = schedule[0]
        await DeductionUploadService.upload(
            db_session, first.period_year, first.period_month,
            payroll_file(
                (disbursed_loan.reference, first.amount, "PAY-1"),
                ("LH/1999/999", "5000", "PAY-2"),
            ),
        )

        once = await ReconciliationService.reconcile(db_session, first.period_year, first.period_month)
        twice = await ReconciliationService.reconcile(db_session, first.period_year, first.period_month)

        assert once.counts == twice.counts
        assert once.counts["matched"] == 1
        assert [item["status"] for item in twice.items] == [ReconciliationStatus.MATCHED]
        stored = (await db_session.execute(select(func.count(DeductionReconciliation.id)))).scalar()
        assert stored == 1

        assert len(twice.mismatches) == 1
        assert twice.mismatches[0]["code"] == "reconciliation_mismatch"
        assert twice.mismatches[0]["loan_reference"] == "LH/1999/999"
        assert twice.total_actual == Decimal(first.amount) + Decimal("5000.00")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_short_deduction_is_partially_paid(self, db_session, disbursed_loan, schedule):
        first = schedule[0]
        await DeductionUploadService.upload(
            db_session, first.period_year, first.period_month,
            payroll_file((disbursed_loan.reference, "4000", "PAY-1")),
        )

        result = await ReconciliationService.reconcile(db_session, first.period_year, first.period_month)

        assert result.items[0]["status"] == ReconciliationStatus.PARTIALLY_PAID
        assert result.items[0]["variance"] == Decimal("4000.00") - Decimal(first.amount)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_nothing_deducted_is_unmatched(self, db_session, disbursed_loan, schedule):
        first = schedule[0]

        result = await ReconciliationService.reconcile(db_session, first.period_year, first.period_month)

        assert result.counts["unmatched"] == 1
        assert result.mismatches == []
