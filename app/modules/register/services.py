"""
Loan registration.

Serial numbers come from a per-year counter row that is incremented and
committed on its own before the register row is written. Numbers are
therefore issued in order and never reused; the only way a number goes
unused is a duplicate registration racing for the same application, which
is logged.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import logging

from app.core.exceptions import InvalidStateTransition, NotFoundError
from app.modules.applications.models import LoanApplication, ApplicationStatus, CommitteeDecision
from app.modules.applications.services import ApplicationService, application_event
from app.modules.deductions.services import DeductionScheduleService
from app.modules.guarantors.services import GuarantorService
from app.modules.loans.calculations import add_months, calculate_emi, to_money
from app.modules.loans.periods import format_period, parse_period, period_of
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox
from app.modules.register.models import LoanRegister, LoanSerialCounter, LoanStatus
from app.modules.threshold.services import AllocationStatus, DrainedEntry, ThresholdService

logger = logging.getLogger(__name__)


@dataclass
class RegistrationOutcome:
    status: str  # registered, queued, rejected
    application_id: int
    reason: Optional[str] = None
    loan: Optional[LoanRegister] = None
    duplicate: bool = False
    period: Optional[str] = None
    queue_position: Optional[int] = None
    drained_loans: List[LoanRegister] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.status == "rejected":
            return f"Capacity for {self.period} could not be allocated: {self.reason}"
        if self.status == "queued":
            return f"Monthly capacity for {self.period} is taken; queued at position {self.queue_position}"
        if self.duplicate:
            return f"Application already registered as {self.loan.reference}"
        return f"Registered as {self.loan.reference}"


@dataclass
class CancellationOutcome:
    application_id: int
    loan: Optional[LoanRegister]
    released: bool
    drained_loans: List[LoanRegister] = field(default_factory=list)


def format_reference(year: int, serial: int) -> str:
    return f"LH/{year}/{serial:03d}"


def loan_event(loan: LoanRegister, event_type: str, **payload) -> DomainEvent:
    return DomainEvent(
        event_type=event_type,
        entity_type="loan",
        entity_id=loan.reference,
        recipient=loan.member_id,
        payload={"application_id": loan.application_id, **payload},
    )


class RegistrationService:
    """Claims capacity for approved applications and writes the loan register"""

    # ============ Serials ============

    @staticmethod
    async def _next_serial(db: AsyncSession, year: int) -> int:
        """Increment the year's counter and commit it before use"""
        while True:
            result = await db.execute(
                update(LoanSerialCounter)
                .where(LoanSerialCounter.year == year)
                .values(last_value=LoanSerialCounter.last_value + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                break
            db.add(LoanSerialCounter(year=year, last_value=1))
            try:
                await db.flush()
                break
            except IntegrityError:
                # The year's counter was created concurrently; increment it instead
                await db.rollback()

        serial = (await db.execute(
            select(LoanSerialCounter.last_value).where(LoanSerialCounter.year == year)
        )).scalar_one()
        await db.commit()
        return serial

    # ============ Lookup ============

    @staticmethod
    async def find_by_application(db: AsyncSession, application_id: int) -> Optional[LoanRegister]:
        result = await db.execute(
            select(LoanRegister)
            .where(LoanRegister.application_id == application_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_reference(db: AsyncSession, reference: str) -> LoanRegister:
        result = await db.execute(
            select(LoanRegister)
            .where(LoanRegister.reference == reference)
            .execution_options(populate_existing=True)
        )
        loan = result.scalar_one_or_none()
        if loan is None:
            raise NotFoundError(f"Loan {reference} not found")
        return loan

    @staticmethod
    async def get_loan(db: AsyncSession, loan_id: int) -> LoanRegister:
        result = await db.execute(
            select(LoanRegister)
            .where(LoanRegister.id == loan_id)
            .execution_options(populate_existing=True)
        )
        loan = result.scalar_one_or_none()
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    @staticmethod
    async def list_loans(
        db: AsyncSession,
        member_id: Optional[str] = None,
        status: Optional[LoanStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LoanRegister], int]:
        query = select(LoanRegister)
        if member_id:
            query = query.where(LoanRegister.member_id == member_id)
        if status:
            query = query.where(LoanRegister.status == status)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        result = await db.execute(
            query.order_by(LoanRegister.serial_year.desc(), LoanRegister.serial_number.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # ============ Registration ============

    @staticmethod
    async def register_application(
        db: AsyncSession,
        application_id: int,
        year: int,
        month: int,
        now: Optional[datetime] = None,
    ) -> Tuple[LoanRegister, bool]:
        """
        Write the register row for an application holding capacity in
        (year, month). Returns (loan, duplicate).
        """
        now = now or datetime.utcnow()
        existing = await RegistrationService.find_by_application(db, application_id)
        if existing is not None:
            return existing, True

        application = await ApplicationService.get_application(db, application_id)
        if application.status not in (ApplicationStatus.ADMITTED, ApplicationStatus.QUEUED):
            raise InvalidStateTransition(
                f"Application {application.application_number} is {application.status.value}, not admitted"
            )

        principal = to_money(application.approved_amount or application.requested_amount)
        tenor = application.approved_tenor_months or application.tenor_months
        rate = Decimal(application.interest_rate)
        member_id, loan_type = application.member_id, application.loan_type
        registration_date = now.date()

        serial = await RegistrationService._next_serial(db, registration_date.year)
        reference = format_reference(registration_date.year, serial)

        loan = LoanRegister(
            serial_year=registration_date.year,
            serial_number=serial,
            reference=reference,
            application_id=application_id,
            member_id=member_id,
            loan_type=loan_type,
            principal=principal,
            interest_rate=rate,
            tenor_months=tenor,
            monthly_emi=calculate_emi(principal, rate, tenor),
            registration_date=registration_date,
            maturity_date=add_months(registration_date, tenor),
            status=LoanStatus.REGISTERED,
            threshold_year=year,
            threshold_month=month,
        )
        db.add(loan)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Serial {reference} left unused: application {application_id} registered concurrently")
            existing = await RegistrationService.find_by_application(db, application_id)
            if existing is None:
                raise
            return existing, True

        moved = await ApplicationService.transition(
            db, application_id, [ApplicationStatus.ADMITTED, ApplicationStatus.QUEUED],
            ApplicationStatus.REGISTERED,
            status_reason=f"Registered as {reference}",
        )
        if not moved:
            await db.rollback()
            logger.warning(f"Serial {reference} left unused: application {application_id} changed state")
            raise InvalidStateTransition(f"Application {application_id} is no longer admitted")

        await ThresholdService.mark_registered(db, year, month)
        EventOutbox.record(db, [loan_event(loan, "loan.registered", principal=principal, period=format_period(year, month))])
        await db.commit()
        logger.info(f"Registered {reference} for application {application_id}: {principal} over {tenor} months")
        return loan, False

    @staticmethod
    async def register_drained(
        db: AsyncSession, drained: Sequence[DrainedEntry], now: Optional[datetime] = None
    ) -> List[LoanRegister]:
        """Register applications the allocator admitted from its queue"""
        loans = []
        for entry in drained:
            loan, _ = await RegistrationService.register_application(
                db, entry.application_id, entry.year, entry.month, now
            )
            loans.append(loan)
        return loans

    @staticmethod
    async def _check_ready(db: AsyncSession, application: LoanApplication, now: datetime) -> None:
        if application.status != ApplicationStatus.APPROVED:
            raise InvalidStateTransition(
                f"Application {application.application_number} is {application.status.value}, not approved"
            )
        if application.committee_decision != CommitteeDecision.APPROVED:
            raise InvalidStateTransition(
                f"Application {application.application_number} has no committee approval"
            )
        if not await GuarantorService.is_complete(db, application, now):
            raise InvalidStateTransition(
                f"Application {application.application_number} does not have a complete guarantor set"
            )

    @staticmethod
    async def request_registration(
        db: AsyncSession,
        application_id: int,
        target_period: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RegistrationOutcome:
        """
        Claim the application, allocate its amount against the month and
        register it, or leave it queued.

        Calling again is safe: a registered application returns its loan
        flagged as duplicate and a queued one reports its position.
        """
        now = now or datetime.utcnow()

        existing = await RegistrationService.find_by_application(db, application_id)
        if existing is not None:
            return RegistrationOutcome(
                status="registered", application_id=application_id, loan=existing, duplicate=True,
                period=format_period(existing.threshold_year, existing.threshold_month),
            )

        application = await ApplicationService.get_application(db, application_id)
        if application.status not in (ApplicationStatus.ADMITTED, ApplicationStatus.QUEUED):
            await RegistrationService._check_ready(db, application, now)

        if target_period:
            year, month = parse_period(target_period)
        elif application.target_year and application.target_month:
            year, month = application.target_year, application.target_month
        else:
            year, month = period_of(now.date())
        amount = to_money(application.approved_amount or application.requested_amount)
        submitted_at = application.submitted_at or now

        if application.status == ApplicationStatus.APPROVED:
            claimed = await ApplicationService.transition(
                db, application_id, [ApplicationStatus.APPROVED], ApplicationStatus.ADMITTED,
                target_year=year, target_month=month,
            )
            if not claimed:
                await db.rollback()
                raise InvalidStateTransition(f"Application {application_id} was claimed concurrently")
            await db.commit()

        outcome = await ThresholdService.try_allocate(
            db, year, month, application_id, amount, now, submitted_at=submitted_at
        )
        result = RegistrationOutcome(status="registered", application_id=application_id, period=outcome.period)

        if outcome.status == AllocationStatus.ADMITTED:
            result.loan, result.duplicate = await RegistrationService.register_application(
                db, application_id, outcome.year, outcome.month, now
            )
        elif outcome.status == AllocationStatus.QUEUED:
            moved = await ApplicationService.transition(
                db, application_id, [ApplicationStatus.ADMITTED], ApplicationStatus.QUEUED,
                status_reason=f"Waiting for capacity in {outcome.period}",
            )
            if moved:
                application = await ApplicationService.get_application(db, application_id)
                event = application_event(
                    application, "application.queued", period=outcome.period, position=outcome.queue_position
                )
                EventOutbox.record(db, [event])
                result.events.append(event)
            await db.commit()
            # A concurrent drain may have registered it in the meantime
            result.loan = await RegistrationService.find_by_application(db, application_id)
            if result.loan is None:
                result.status = "queued"
                result.queue_position = outcome.queue_position
        else:
            await ApplicationService.transition(
                db, application_id, [ApplicationStatus.ADMITTED], ApplicationStatus.APPROVED,
                status_reason=f"Allocation refused: {outcome.reason.value}",
            )
            result.status = "rejected"
            result.reason = outcome.reason.value
            await db.commit()
            logger.warning(f"Registration of application {application_id} refused: {outcome.reason.value}")

        result.drained_loans = await RegistrationService.register_drained(db, outcome.drained, now)
        result.events.extend(outcome.events)
        return result

    # ============ Lifecycle ============

    @staticmethod
    async def cancel(
        db: AsyncSession, application_id: int, reason: str, now: Optional[datetime] = None
    ) -> CancellationOutcome:
        """
        Cancel before disbursement. A registered loan gives its capacity back;
        a queued application leaves the queue. Either way the queue drains.
        """
        now = now or datetime.utcnow()
        loan = await RegistrationService.find_by_application(db, application_id)

        if loan is None:
            application = await ApplicationService.get_application(db, application_id)
            if application.status != ApplicationStatus.QUEUED:
                raise InvalidStateTransition(
                    f"Application {application.application_number} has no loan or queue entry to cancel"
                )
            withdrawn, drained = await ThresholdService.withdraw_queued(db, application_id, now)
            moved = await ApplicationService.transition(
                db, application_id, [ApplicationStatus.QUEUED], ApplicationStatus.CANCELLED,
                status_reason=reason,
            )
            if moved:
                application = await ApplicationService.get_application(db, application_id)
                EventOutbox.record(db, [application_event(application, "application.withdrawn", reason=reason)])
            await db.commit()
            logger.info(f"Queued application {application_id} cancelled")
            return CancellationOutcome(
                application_id=application_id,
                loan=None,
                released=False,
                drained_loans=await RegistrationService.register_drained(db, drained, now),
            )

        if loan.status == LoanStatus.CANCELLED:
            return CancellationOutcome(application_id=application_id, loan=loan, released=False)
        if loan.status != LoanStatus.REGISTERED:
            raise InvalidStateTransition(f"Loan {loan.reference} is {loan.status.value} and cannot be cancelled")

        loan_id, reference = loan.id, loan.reference
        result = await db.execute(
            update(LoanRegister)
            .where(LoanRegister.id == loan_id, LoanRegister.status == LoanStatus.REGISTERED)
            .values(status=LoanStatus.CANCELLED, cancelled_at=now, cancellation_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise InvalidStateTransition(f"Loan {reference} changed state concurrently")
        EventOutbox.record(db, [loan_event(loan, "loan.cancelled", reason=reason)])
        await db.commit()
        logger.info(f"Loan {reference} cancelled before disbursement: {reason}")

        drained = await ThresholdService.release(db, application_id, was_registered=True, now=now)
        return CancellationOutcome(
            application_id=application_id,
            loan=await RegistrationService.get_loan(db, loan_id),
            released=True,
            drained_loans=await RegistrationService.register_drained(db, drained, now),
        )

    @staticmethod
    async def disburse(
        db: AsyncSession, application_id: int, disbursement_date: Optional[date] = None
    ) -> LoanRegister:
        """Mark the loan paid out and generate its deduction schedule"""
        loan = await RegistrationService.find_by_application(db, application_id)
        if loan is None:
            raise NotFoundError(f"No loan registered for application {application_id}")
        loan_id, reference, current_status = loan.id, loan.reference, loan.status
        disbursement_date = disbursement_date or date.today()

        result = await db.execute(
            update(LoanRegister)
            .where(LoanRegister.id == loan_id, LoanRegister.status == LoanStatus.REGISTERED)
            .values(status=LoanStatus.ACTIVE, disbursement_date=disbursement_date, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise InvalidStateTransition(f"Loan {reference} is {current_status.value}, not registered")

        EventOutbox.record(db, [loan_event(loan, "loan.disbursed", disbursement_date=disbursement_date)])
        await db.commit()
        logger.info(f"Loan {reference} disbursed on {disbursement_date}")

        loan = await RegistrationService.get_loan(db, loan_id)
        await DeductionScheduleService.align_to_disbursement(db, loan)
        return loan
