from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from fastapi.encoders import jsonable_encoder
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import List, Optional, Sequence, Tuple
import logging
import secrets

from app.core.exceptions import IneligibleError, InvalidStateTransition, NotFoundError
from app.modules.applications.models import (
    LoanApplication, ApplicationStatus, WITHDRAWABLE_STATUSES
)
from app.modules.applications.schemas import ApplicationCreate
from app.modules.eligibility.schemas import EligibilityResult
from app.modules.eligibility.services import EligibilityService
from app.modules.loans.periods import parse_period
from app.modules.loans.products import get_product_rules
from app.modules.members.services import MemberProfileService
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    application: LoanApplication
    eligibility: EligibilityResult
    events: List[DomainEvent] = field(default_factory=list)


def application_event(application: LoanApplication, event_type: str, **payload) -> DomainEvent:
    return DomainEvent(
        event_type=event_type,
        entity_type="application",
        entity_id=str(application.id),
        recipient=application.member_id,
        payload={"application_number": application.application_number, **payload},
    )


class ApplicationService:
    """Owns the application record and its status transitions"""

    @staticmethod
    def _generate_application_number() -> str:
        return f"LA-{secrets.token_hex(4).upper()}"

    @staticmethod
    async def create_application(db: AsyncSession, member_id: str, data: ApplicationCreate) -> LoanApplication:
        """Create a draft application"""
        await MemberProfileService.get_profile(db, member_id)
        rules = get_product_rules(data.loan_type)

        target_year = target_month = None
        if data.target_period:
            target_year, target_month = parse_period(data.target_period)

        application = LoanApplication(
            application_number=ApplicationService._generate_application_number(),
            member_id=member_id,
            loan_type=data.loan_type,
            requested_amount=data.requested_amount,
            tenor_months=data.tenor_months,
            interest_rate=rules.interest_rate,
            purpose=data.purpose,
            status=ApplicationStatus.DRAFT,
            required_guarantors=rules.required_guarantors,
            nomination_round=1,
            target_year=target_year,
            target_month=target_month,
        )
        db.add(application)
        await db.commit()
        await db.refresh(application)
        logger.info(f"Created application {application.application_number} for member {member_id}")
        return application

    @staticmethod
    async def get_application(db: AsyncSession, application_id: int) -> LoanApplication:
        result = await db.execute(
            select(LoanApplication)
            .where(LoanApplication.id == application_id)
            .execution_options(populate_existing=True)
        )
        application = result.scalar_one_or_none()
        if application is None:
            raise NotFoundError(f"Application {application_id} not found")
        return application

    @staticmethod
    async def list_applications(
        db: AsyncSession,
        member_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[LoanApplication], int]:
        query = select(LoanApplication)
        if member_id:
            query = query.where(LoanApplication.member_id == member_id)
        if status:
            query = query.where(LoanApplication.status == status)

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar()

        result = await db.execute(
            query.order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def transition(
        db: AsyncSession,
        application_id: int,
        from_statuses: Sequence[ApplicationStatus],
        to_status: ApplicationStatus,
        **values,
    ) -> bool:
        """
        Guarded status change: only applies while the row is still in one
        of `from_statuses`. Does not commit.
        """
        result = await db.execute(
            update(LoanApplication)
            .where(
                LoanApplication.id == application_id,
                LoanApplication.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def submit(
        db: AsyncSession,
        application_id: int,
        evaluation_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> SubmitResult:
        """
        Submit a draft.

        Eligibility is evaluated first; an ineligible draft stays a draft and
        the reasons are raised as IneligibleError. Products that need no
        guarantors go straight to committee review.
        """
        now = now or datetime.utcnow()
        application = await ApplicationService.get_application(db, application_id)
        if application.status != ApplicationStatus.DRAFT:
            raise InvalidStateTransition(
                f"Application {application.application_number} is {application.status.value}, not draft"
            )

        eligibility = await EligibilityService.check(
            db,
            application.member_id,
            application.requested_amount,
            application.loan_type,
            application.tenor_months,
            evaluation_date or now.date(),
        )
        if not eligibility.is_eligible:
            raise IneligibleError(
                f"Application {application.application_number} is not eligible",
                reasons=eligibility.reasons,
            )

        next_status = (
            ApplicationStatus.AWAITING_GUARANTORS
            if application.required_guarantors > 0
            else ApplicationStatus.COMMITTEE_REVIEW
        )
        moved = await ApplicationService.transition(
            db, application.id, [ApplicationStatus.DRAFT], next_status,
            submitted_at=now,
            eligibility_snapshot=jsonable_encoder(eligibility),
        )
        if not moved:
            await db.rollback()
            raise InvalidStateTransition(f"Application {application.application_number} was submitted concurrently")

        events = [application_event(application, "application.submitted", status=next_status.value)]
        EventOutbox.record(db, events)
        await db.commit()

        application = await ApplicationService.get_application(db, application_id)
        logger.info(f"Application {application.application_number} submitted -> {next_status.value}")
        return SubmitResult(application=application, eligibility=eligibility, events=events)

    @staticmethod
    async def withdraw(db: AsyncSession, application_id: int, reason: Optional[str] = None) -> LoanApplication:
        """Withdraw an application that has not yet reached the allocator"""
        application = await ApplicationService.get_application(db, application_id)
        moved = await ApplicationService.transition(
            db, application.id, WITHDRAWABLE_STATUSES, ApplicationStatus.CANCELLED,
            status_reason=reason or "Withdrawn by applicant",
        )
        if not moved:
            raise InvalidStateTransition(
                f"Application {application.application_number} cannot be withdrawn while {application.status.value}"
            )
        EventOutbox.record(db, [application_event(application, "application.withdrawn", reason=reason)])
        await db.commit()
        logger.info(f"Application {application.application_number} withdrawn")
        return await ApplicationService.get_application(db, application_id)
