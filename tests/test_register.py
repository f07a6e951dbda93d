"""
Tests for loan registration, cancellation and disbursement
"""
import pytest
from decimal import Decimal
from datetime import datetime, date, timedelta

from sqlalchemy import select, func

from app.core.exceptions import InvalidStateTransition
from app.modules.applications.models import ApplicationStatus
from app.modules.applications.services import ApplicationService
from app.modules.deductions.models import DeductionScheduleRow
from app.modules.deductions.services import DeductionScheduleService
from app.modules.loans.calculations import add_months, calculate_emi
from app.modules.loans.periods import format_period, previous_period
from app.modules.register.models import LoanStatus
from app.modules.register.services import RegistrationService, format_reference
from app.modules.threshold.services import ThresholdService


@pytest.fixture
async def tight_month(db_session, current_period):
    """Current period with room for one 700,000 loan"""
    threshold, _ = await ThresholdService.adjust_maximum(db_session, *current_period, Decimal("1000000"))
    return threshold


class TestReferences:
    """Tests for register references"""

    @pytest.mark.unit
    def test_format_reference(self):
        assert format_reference(2026, 1) == "LH/2026/001"
        assert format_reference(2026, 1234) == "LH/2026/1234"


class TestRegistration:
    """Tests for registering approved applications"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_approved_application(self, db_session, make_application, current_period):
        application = await make_application(Decimal("500000"), tenor_months=12)
        year = datetime.utcnow().year

        outcome = await RegistrationService.request_registration(db_session, application.id)

        assert outcome.status == "registered"
        assert outcome.duplicate is False
        loan = outcome.loan
        assert loan.reference == f"LH/{year}/001"
        assert loan.principal == Decimal("500000")
        assert loan.status == LoanStatus.REGISTERED
        assert loan.monthly_emi == calculate_emi(Decimal("500000"), Decimal("12"), 12)
        assert loan.maturity_date == add_months(loan.registration_date, 12)
        assert outcome.period == format_period(*current_period)

        application = await ApplicationService.get_application(db_session, application.id)
        assert application.status == ApplicationStatus.REGISTERED
        threshold = await ThresholdService.get_threshold(db_session, *current_period)
        assert threshold.allocated_amount == Decimal("500000")
        assert threshold.total_applications_registered == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_serials_are_sequential(self, db_session, make_application):
        year = datetime.utcnow().year
        references = []
        for _ in range(3):
            application = await make_application(Decimal("100000"))
            outcome = await RegistrationService.request_registration(db_session, application.id)
            references.append(outcome.loan.reference)

        assert references == [f"LH/{year}/001", f"LH/{year}/002", f"LH/{year}/003"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_repeat_request_returns_existing_loan(self, db_session, make_application, current_period):
        application = await make_application(Decimal("500000"))
        first = await RegistrationService.request_registration(db_session, application.id)

        second = await RegistrationService.request_registration(db_session, application.id)

        assert second.duplicate is True
        assert second.loan.id == first.loan.id
        threshold = await ThresholdService.get_threshold(db_session, *current_period)
        assert threshold.allocated_amount == Decimal("500000")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_committee_amount_is_registered(self, db_session, make_application):
        application = await make_application(Decimal("500000"))
        application.approved_amount = Decimal("450000")
        await db_session.commit()

        outcome = await RegistrationService.request_registration(db_session, application.id)

        assert outcome.loan.principal == Decimal("450000")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unapproved_application_is_refused(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)

        with pytest.raises(InvalidStateTransition):
            await RegistrationService.request_registration(db_session, application.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_closed_target_period_is_rejected(self, db_session, make_application, current_period):
        application = await make_application()

        outcome = await RegistrationService.request_registration(
            db_session, application.id, format_period(*previous_period(*current_period))
        )

        assert outcome.status == "rejected"
        assert outcome.reason == "period_closed"
        application = await ApplicationService.get_application(db_session, application.id)
        assert application.status == ApplicationStatus.APPROVED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_full_month_queues_application(self, db_session, make_application, tight_month):
        first = await make_application(Decimal("700000"))
        second = await make_application(Decimal("600000"))
        await RegistrationService.request_registration(db_session, first.id)

        outcome = await RegistrationService.request_registration(db_session, second.id)

        assert outcome.status == "queued"
        assert outcome.queue_position == 1
        assert outcome.loan is None
        assert "position 1" in outcome.message
        application = await ApplicationService.get_application(db_session, second.id)
        assert application.status == ApplicationStatus.QUEUED

        again = await RegistrationService.request_registration(db_session, second.id)
        assert again.status == "queued"
        assert again.queue_position == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_queue_follows_submission_not_registration_order(
        self, db_session, make_application, tight_month
    ):
        filler = await make_application(Decimal("1000000"))
        earlier = await make_application(Decimal("100000"))
        later = await make_application(Decimal("100000"))
        earlier.submitted_at = datetime.utcnow() - timedelta(days=1)
        await db_session.commit()
        await RegistrationService.request_registration(db_session, filler.id)

        await RegistrationService.request_registration(db_session, later.id)
        outcome = await RegistrationService.request_registration(db_session, earlier.id)

        assert outcome.status == "queued"
        assert outcome.queue_position == 1
        queue = await ThresholdService.list_queue(db_session, tight_month.year, tight_month.month)
        assert [entry.application_id for entry in queue] == [earlier.id, later.id]


class TestCancellation:
    """Tests for cancelling before disbursement"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_releases_capacity_to_queue(self, db_session, make_application, tight_month):
        year = datetime.utcnow().year
        first = await make_application(Decimal("700000"))
        second = await make_application(Decimal("600000"))
        await RegistrationService.request_registration(db_session, first.id)
        await RegistrationService.request_registration(db_session, second.id)

        outcome = await RegistrationService.cancel(db_session, first.id, "Member withdrew")

        assert outcome.released is True
        assert outcome.loan.status == LoanStatus.CANCELLED
        assert [loan.application_id for loan in outcome.drained_loans] == [second.id]
        assert outcome.drained_loans[0].reference == f"LH/{year}/002"

        threshold = await ThresholdService.load_by_id(db_session, tight_month.id)
        assert threshold.allocated_amount == Decimal("600000")
        assert threshold.total_applications_registered == 1
        application = await ApplicationService.get_application(db_session, second.id)
        assert application.status == ApplicationStatus.REGISTERED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_twice_changes_nothing(self, db_session, make_application, tight_month):
        application = await make_application(Decimal("400000"))
        await RegistrationService.request_registration(db_session, application.id)
        await RegistrationService.cancel(db_session, application.id, "Duplicate request")

        again = await RegistrationService.cancel(db_session, application.id, "Duplicate request")

        assert again.released is False
        assert again.loan.status == LoanStatus.CANCELLED
        threshold = await ThresholdService.load_by_id(db_session, tight_month.id)
        assert threshold.allocated_amount == Decimal("0")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_queued_application(self, db_session, make_application, tight_month):
        first = await make_application(Decimal("700000"))
        second = await make_application(Decimal("600000"))
        await RegistrationService.request_registration(db_session, first.id)
        await RegistrationService.request_registration(db_session, second.id)

        outcome = await RegistrationService.cancel(db_session, second.id, "No longer needed")

        assert outcome.loan is None
        assert outcome.released is False
        application = await ApplicationService.get_application(db_session, second.id)
        assert application.status == ApplicationStatus.CANCELLED
        threshold = await ThresholdService.load_by_id(db_session, tight_month.id)
        assert threshold.total_applications_queued == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cannot_cancel_approved_application(self, db_session, make_application):
        application = await make_application()

        with pytest.raises(InvalidStateTransition):
            await RegistrationService.cancel(db_session, application.id, "Too early")


class TestDisbursement:
    """Tests for disbursing registered loans"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disburse_generates_schedule(self, db_session, make_application):
        application = await make_application(Decimal("120000"), tenor_months=6)
        await RegistrationService.request_registration(db_session, application.id)
        paid_out = date.today()

        loan = await RegistrationService.disburse(db_session, application.id, paid_out)

        assert loan.status == LoanStatus.ACTIVE
        assert loan.disbursement_date == paid_out
        rows = (await db_session.execute(
            select(func.count(DeductionScheduleRow.id)).where(DeductionScheduleRow.loan_id == loan.id)
        )).scalar()
        assert rows == 6

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disbursed_loan_cannot_be_cancelled(self, db_session, make_application):
        application = await make_application(Decimal("120000"))
        await RegistrationService.request_registration(db_session, application.id)
        await RegistrationService.disburse(db_session, application.id)

        with pytest.raises(InvalidStateTransition):
            await RegistrationService.cancel(db_session, application.id, "Too late")
        with pytest.raises(InvalidStateTransition):
            await RegistrationService.disburse(db_session, application.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_schedule_generated_before_disbursement_is_realigned(self, db_session, make_application):
        application = await make_application(Decimal("120000"), tenor_months=6)
        outcome = await RegistrationService.request_registration(db_session, application.id)
        early_rows = await DeductionScheduleService.ensure_schedule(db_session, outcome.loan)
        assert early_rows[0].due_date == add_months(outcome.loan.registration_date, 1)
        paid_out = add_months(date.today(), 2)

        loan = await RegistrationService.disburse(db_session, application.id, paid_out)

        rows = await DeductionScheduleService.current_rows(db_session, loan.id)
        assert len(rows) == 6
        assert rows[0].due_date == add_months(paid_out, 1)
        assert {row.version for row in rows} == {2}
        superseded = (await db_session.execute(
            select(func.count(DeductionScheduleRow.id)).where(
                DeductionScheduleRow.loan_id == loan.id, DeductionScheduleRow.superseded.is_(True)
            )
        )).scalar()
        assert superseded == 6
