"""
Tests for the month-boundary rollover
"""
import pytest
from decimal import Decimal
from datetime import datetime, timedelta

from app.core.config import settings
from app.modules.applications.models import ApplicationStatus
from app.modules.applications.services import ApplicationService
from app.modules.loans.jobs import rollover_job
from app.modules.loans.periods import format_period, previous_period
from app.modules.register.services import RegistrationService
from app.modules.threshold.models import (
    MonthlyThreshold, AllocationQueueEntry, ThresholdStatus, QueueEntryStatus
)
from app.modules.threshold.rollover import run_monthly_rollover
from app.modules.threshold.services import AllocationStatus, ThresholdService


@pytest.fixture
async def last_month(db_session, current_period):
    """Previous period left open with 200,000 unused"""
    year, month = previous_period(*current_period)
    threshold = MonthlyThreshold(
        year=year,
        month=month,
        maximum_amount=Decimal("1000000"),
        allocated_amount=Decimal("800000"),
        remaining_amount=Decimal("200000"),
        carried_forward_amount=Decimal("0"),
        carry_forward_applied=True,
        status=ThresholdStatus.OPEN,
        version=1,
    )
    db_session.add(threshold)
    await db_session.commit()
    return threshold


@pytest.fixture
def queue_in(db_session):
    """Leave an application waiting in a period's queue"""

    async def _queue(threshold, application, minutes_ago: int):
        db_session.add(AllocationQueueEntry(
            threshold_id=threshold.id,
            application_id=application.id,
            amount=application.approved_amount,
            submitted_at=datetime.utcnow() - timedelta(minutes=minutes_ago),
            carried_over=False,
            status=QueueEntryStatus.QUEUED,
        ))
        threshold.total_applications_queued = (threshold.total_applications_queued or 0) + 1
        await db_session.commit()

    return _queue


class TestRollover:
    """Tests for closing past periods and carrying the queue forward"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rollover_carries_queue_and_capacity(
        self, db_session, make_application, current_period, last_month, queue_in, monkeypatch
    ):
        monkeypatch.setattr(settings, "DEFAULT_MONTHLY_THRESHOLD", Decimal("1000000"))
        monkeypatch.setattr(settings, "THRESHOLD_CARRY_FORWARD_FRACTION", Decimal("0.5"))
        last_month_id = last_month.id

        first = await make_application(Decimal("300000"), status=ApplicationStatus.QUEUED)
        second = await make_application(Decimal("200000"), status=ApplicationStatus.QUEUED)
        await queue_in(last_month, first, minutes_ago=60)
        await queue_in(last_month, second, minutes_ago=30)

        # The current month is already full with its own applicant waiting
        filler = await make_application(Decimal("1000000"))
        newcomer = await make_application(Decimal("50000"))
        admitted = await ThresholdService.try_allocate(db_session, *current_period, filler.id, Decimal("1000000"))
        waiting = await ThresholdService.try_allocate(db_session, *current_period, newcomer.id, Decimal("50000"))
        assert admitted.status == AllocationStatus.ADMITTED
        assert waiting.status == AllocationStatus.QUEUED

        result = await run_monthly_rollover(db_session, closed_by="ADM-1")

        assert result.period == format_period(*current_period)
        assert result.carried_forward == Decimal("100000.00")
        assert result.closed_periods == [format_period(*previous_period(*current_period))]
        assert result.moved_entries == 2
        # The carried-over head does not fit, so nothing behind it is admitted
        assert result.drained == []

        current = await ThresholdService.get_threshold(db_session, *current_period)
        assert current.maximum_amount == Decimal("1100000")
        assert current.remaining_amount == Decimal("100000")
        assert current.status == ThresholdStatus.OPEN
        assert current.total_applications_queued == 3

        closed = await ThresholdService.load_by_id(db_session, last_month_id)
        assert closed.status == ThresholdStatus.CLOSED
        assert closed.closed_by == "ADM-1"
        assert closed.total_applications_queued == 0

        queue = await ThresholdService.list_queue(db_session, *current_period)
        assert [entry.application_id for entry in queue] == [first.id, second.id, newcomer.id]
        assert [entry.carried_over for entry in queue] == [True, True, False]
        assert queue[0].original_threshold_id == last_month_id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rollover_runs_once_per_month(
        self, db_session, make_application, current_period, last_month, queue_in, monkeypatch
    ):
        monkeypatch.setattr(settings, "THRESHOLD_CARRY_FORWARD_FRACTION", Decimal("0.5"))
        waiting = await make_application(Decimal("300000"), status=ApplicationStatus.QUEUED)
        await queue_in(last_month, waiting, minutes_ago=10)
        await run_monthly_rollover(db_session)
        before = await ThresholdService.get_threshold(db_session, *current_period)
        maximum, version = before.maximum_amount, before.version

        again = await run_monthly_rollover(db_session)

        assert again.carried_forward == Decimal("0.00")
        assert again.closed_periods == []
        assert again.moved_entries == 0
        after = await ThresholdService.get_threshold(db_session, *current_period)
        assert after.maximum_amount == maximum
        assert after.version == version

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_carry_forward_stays_under_ceiling(self, db_session, current_period, last_month, monkeypatch):
        monkeypatch.setattr(settings, "THRESHOLD_CARRY_FORWARD_FRACTION", Decimal("1"))

        result = await run_monthly_rollover(db_session)

        # The current month opened at the maximum ceiling already
        assert result.carried_forward == Decimal("0.00")
        current = await ThresholdService.get_threshold(db_session, *current_period)
        assert current.maximum_amount == settings.MAX_MONTHLY_THRESHOLD

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_job_registers_what_fits(self, db_session, make_application, current_period, last_month, queue_in):
        waiting = await make_application(Decimal("200000"), status=ApplicationStatus.QUEUED)
        await queue_in(last_month, waiting, minutes_ago=10)

        result = await rollover_job(db_session)

        assert [entry.application_id for entry in result.drained] == [waiting.id]
        loan = await RegistrationService.find_by_application(db_session, waiting.id)
        assert loan is not None
        assert (loan.threshold_year, loan.threshold_month) == current_period
        application = await ApplicationService.get_application(db_session, waiting.id)
        assert application.status == ApplicationStatus.REGISTERED

        current = await ThresholdService.get_threshold(db_session, *current_period)
        assert current.allocated_amount == Decimal("200000")
        assert current.total_applications_registered == 1
