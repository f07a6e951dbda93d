"""
Tests for delinquency classification and scanning
"""
import pytest
from decimal import Decimal
from datetime import date, timedelta

from sqlalchemy import select

from app.modules.deductions.models import ReconciliationStatus
from app.modules.deductions.services import DeductionScheduleService, DeductionUploadService, ReconciliationService
from app.modules.delinquency.models import LoanDelinquencyRecord
from app.modules.delinquency.services import DelinquencyService, classify, count_consecutive_missed
from app.modules.register.models import DelinquencyStatus
from app.modules.register.services import RegistrationService


async def pay(db_session, loan, row, amount=None):
    """Upload and reconcile one installment"""
    content = f"loan_reference,amount\n{loan.reference},{amount or row.amount}\n".encode()
    await DeductionUploadService.upload(db_session, row.period_year, row.period_month, content)
    await ReconciliationService.reconcile(db_session, row.period_year, row.period_month)


@pytest.fixture
async def active_loan(db_session, make_application):
    application = await make_application(Decimal("120000"), tenor_months=12)
    await RegistrationService.request_registration(db_session, application.id)
    loan = await RegistrationService.disburse(db_session, application.id, date.today())
    rows = await DeductionScheduleService.current_rows(db_session, loan.id)
    return loan, rows


class TestClassification:
    """Tests for counting missed installments"""

    @pytest.mark.unit
    def test_counts_back_from_newest(self):
        statuses = [None, ReconciliationStatus.PARTIALLY_PAID, ReconciliationStatus.MATCHED, None]

        assert count_consecutive_missed(statuses) == 2

    @pytest.mark.unit
    def test_overpaid_counts_as_paid(self):
        assert count_consecutive_missed([ReconciliationStatus.OVERPAID, None]) == 0

    @pytest.mark.unit
    def test_nothing_due(self):
        assert count_consecutive_missed([]) == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("missed,expected", [
        (0, DelinquencyStatus.CURRENT),
        (1, DelinquencyStatus.WATCH),
        (2, DelinquencyStatus.DELINQUENT),
        (3, DelinquencyStatus.DEFAULT_CANDIDATE),
        (7, DelinquencyStatus.DEFAULT_CANDIDATE),
    ])
    def test_classify(self, missed, expected):
        assert classify(missed) == expected


class TestScan:
    """Tests for the delinquency scan over live loans"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_nothing_due_yet(self, db_session, active_loan):
        result = await DelinquencyService.scan(db_session, date.today())

        assert result.checked == 1
        assert result.changed == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_installments_within_grace_are_not_missed(self, db_session, active_loan):
        loan, rows = active_loan

        assessment = await DelinquencyService.assess(db_session, loan.id, rows[0].due_date + timedelta(days=5))

        assert assessment.consecutive_missed == 0
        assert assessment.status == DelinquencyStatus.CURRENT

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_two_missed_installments(self, db_session, active_loan):
        loan, rows = active_loan
        loan_id = loan.id
        await pay(db_session, loan, rows[0])
        today = rows[2].due_date + timedelta(days=10)

        result = await DelinquencyService.scan(db_session, today)

        assert len(result.changed) == 1
        record = result.changed[0]
        assert record.previous_status == DelinquencyStatus.CURRENT
        assert record.new_status == DelinquencyStatus.DELINQUENT
        assert record.consecutive_missed == 2
        assert record.days_overdue == (today - rows[1].due_date).days
        assert record.overdue_amount == Decimal(rows[1].amount) + Decimal(rows[2].amount)

        loan = await RegistrationService.get_loan(db_session, loan_id)
        assert loan.delinquency_status == DelinquencyStatus.DELINQUENT

        again = await DelinquencyService.scan(db_session, today)
        assert again.changed == []
        records = (await db_session.execute(select(LoanDelinquencyRecord))).scalars().all()
        assert len(records) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_partial_payment_is_still_missed(self, db_session, active_loan):
        loan, rows = active_loan
        await pay(db_session, loan, rows[0], amount="1000")

        assessment = await DelinquencyService.assess(db_session, loan.id, rows[0].due_date + timedelta(days=10))

        assert assessment.status == DelinquencyStatus.WATCH
        assert assessment.overdue_amount == Decimal(rows[0].amount) - Decimal("1000.00")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_catching_up_returns_to_current(self, db_session, active_loan):
        loan, rows = active_loan
        loan_id = loan.id
        today = rows[2].due_date + timedelta(days=10)
        await DelinquencyService.scan(db_session, today)

        for row in rows[:3]:
            await pay(db_session, loan, row)
        result = await DelinquencyService.scan(db_session, today)

        assert [record.new_status for record in result.changed] == [DelinquencyStatus.CURRENT]
        loan = await RegistrationService.get_loan(db_session, loan_id)
        assert loan.delinquency_status == DelinquencyStatus.CURRENT

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_listing_and_summary(self, db_session, active_loan):
        loan, rows = active_loan
        reference = loan.reference
        await DelinquencyService.scan(db_session, rows[3].due_date + timedelta(days=10))

        items, total = await DelinquencyService.list_delinquent(db_session)
        assert total == 1
        assert items[0]["reference"] == reference
        assert items[0]["delinquency_status"] == DelinquencyStatus.DEFAULT_CANDIDATE
        assert items[0]["consecutive_missed"] == 4

        summary = await DelinquencyService.summary(db_session)
        assert summary["counts"]["default_candidate"] == 1
        assert summary["at_risk_principal"] == Decimal("120000.00")
        assert summary["total_overdue_amount"] == items[0]["overdue_amount"]
