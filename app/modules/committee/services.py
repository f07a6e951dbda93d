from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import logging

from app.core.config import settings
from app.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from app.modules.applications.models import LoanApplication, ApplicationStatus, CommitteeDecision
from app.modules.applications.services import ApplicationService, application_event
from app.modules.committee.aggregation import AggregateOutcome, ReviewVote, aggregate_reviews
from app.modules.committee.models import CommitteeReview, ReviewDecision
from app.modules.committee.schemas import ReviewSubmission
from app.modules.members.services import MemberProfileService
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = (ApplicationStatus.AWAITING_GUARANTORS, ApplicationStatus.COMMITTEE_REVIEW)
REVIEWABLE_STATUSES = (ApplicationStatus.COMMITTEE_REVIEW, ApplicationStatus.APPROVED, ApplicationStatus.REJECTED)
CLOSED_STATUSES = (ApplicationStatus.ADMITTED, ApplicationStatus.QUEUED, ApplicationStatus.REGISTERED)


@dataclass
class ReviewOutcome:
    review: CommitteeReview
    application: LoanApplication
    aggregate: AggregateOutcome
    events: List[DomainEvent] = field(default_factory=list)


class CommitteeService:
    """Reviewer assignment, decisions and the aggregate verdict"""

    @staticmethod
    async def get_reviews(db: AsyncSession, application_id: int) -> List[CommitteeReview]:
        result = await db.execute(
            select(CommitteeReview)
            .where(CommitteeReview.application_id == application_id)
            .order_by(CommitteeReview.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def assign_reviewers(
        db: AsyncSession, application_id: int, reviewer_ids: List[str], now: Optional[datetime] = None
    ) -> List[CommitteeReview]:
        """Create pending reviews; reassigning an existing reviewer is a no-op"""
        now = now or datetime.utcnow()
        application = await ApplicationService.get_application(db, application_id)
        if application.status not in ASSIGNABLE_STATUSES:
            raise InvalidStateTransition(
                f"Reviewers cannot be assigned while application is {application.status.value}"
            )
        if application.member_id in reviewer_ids:
            raise ValidationError("Applicants cannot review their own application")

        existing = {r.reviewer_id for r in await CommitteeService.get_reviews(db, application.id)}
        events = []
        for reviewer_id in dict.fromkeys(reviewer_ids):
            if reviewer_id in existing:
                continue
            db.add(CommitteeReview(
                application_id=application.id,
                reviewer_id=reviewer_id,
                decision=ReviewDecision.PENDING,
                assigned_at=now,
            ))
            events.append(DomainEvent(
                event_type="committee.review_assigned",
                entity_type="application",
                entity_id=str(application.id),
                recipient=reviewer_id,
                payload={"application_number": application.application_number},
            ))

        EventOutbox.record(db, events)
        await db.commit()
        logger.info(f"Assigned {len(events)} reviewer(s) to {application.application_number}")
        return await CommitteeService.get_reviews(db, application.id)

    @staticmethod
    def _votes(reviews: List[CommitteeReview]) -> List[ReviewVote]:
        return [
            ReviewVote(r.decision, r.recommended_amount, r.recommended_tenor_months)
            for r in reviews
        ]

    @staticmethod
    async def aggregate(db: AsyncSession, application: LoanApplication) -> AggregateOutcome:
        reviews = await CommitteeService.get_reviews(db, application.id)
        return aggregate_reviews(
            CommitteeService._votes(reviews),
            application.requested_amount,
            application.tenor_months,
            settings.COMMITTEE_QUORUM,
        )

    @staticmethod
    async def submit_review(
        db: AsyncSession, reviewer_id: str, data: ReviewSubmission, now: Optional[datetime] = None
    ) -> ReviewOutcome:
        """
        Record a reviewer's decision and re-evaluate the aggregate.

        A rejected aggregate is final. Reviews are closed once the
        application has reached the allocator.
        """
        now = now or datetime.utcnow()
        if data.decision == ReviewDecision.PENDING:
            raise ValidationError("A review must carry a decision")

        application = await ApplicationService.get_application(db, data.application_id)
        if application.status in CLOSED_STATUSES:
            raise InvalidStateTransition(
                f"Application {application.application_number} is {application.status.value}; reviews are closed"
            )
        if application.status not in REVIEWABLE_STATUSES:
            raise InvalidStateTransition(
                f"Application {application.application_number} is not under committee review"
            )

        result = await db.execute(
            select(CommitteeReview).where(
                CommitteeReview.application_id == application.id,
                CommitteeReview.reviewer_id == reviewer_id,
            ).execution_options(populate_existing=True)
        )
        review = result.scalar_one_or_none()
        if review is None:
            raise NotFoundError(f"Reviewer {reviewer_id} is not assigned to this application")
        if review.is_terminal:
            raise InvalidStateTransition(f"Reviewer {reviewer_id} already decided {review.decision.value}")

        credit_score, risk_rating, repayment_score = data.credit_score, data.risk_rating, None
        profile = await MemberProfileService.find_profile(db, application.member_id)
        if profile is not None:
            credit_score = credit_score if credit_score is not None else profile.credit_score
            risk_rating = risk_rating or profile.risk_rating
            repayment_score = profile.repayment_score

        updated = await db.execute(
            update(CommitteeReview)
            .where(
                CommitteeReview.id == review.id,
                CommitteeReview.decision.in_(
                    [ReviewDecision.PENDING, ReviewDecision.REQUIRES_MORE_INFORMATION]
                ),
            )
            .values(
                decision=data.decision,
                recommended_amount=data.recommended_amount,
                recommended_tenor_months=data.recommended_tenor_months,
                credit_score=credit_score,
                risk_rating=risk_rating,
                repayment_score=repayment_score,
                conditions=data.conditions,
                comments=data.comments,
                decided_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            await db.rollback()
            raise InvalidStateTransition(f"Reviewer {reviewer_id} already decided")

        outcome = await CommitteeService.aggregate(db, application)
        events = await CommitteeService._apply_aggregate(db, application, outcome, now)
        EventOutbox.record(db, events)
        await db.commit()

        application = await ApplicationService.get_application(db, application.id)
        review = (await db.execute(
            select(CommitteeReview)
            .where(CommitteeReview.id == review.id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        logger.info(
            f"Review by {reviewer_id} on {application.application_number}: {data.decision.value}; "
            f"aggregate {application.committee_decision.value}"
        )
        return ReviewOutcome(review=review, application=application, aggregate=outcome, events=events)

    @staticmethod
    async def _apply_aggregate(
        db: AsyncSession, application: LoanApplication, outcome: AggregateOutcome, now: datetime
    ) -> List[DomainEvent]:
        if application.committee_decision == CommitteeDecision.REJECTED:
            return []

        if outcome.decision == CommitteeDecision.REJECTED:
            moved = await ApplicationService.transition(
                db, application.id,
                [ApplicationStatus.COMMITTEE_REVIEW, ApplicationStatus.APPROVED], ApplicationStatus.REJECTED,
                committee_decision=CommitteeDecision.REJECTED,
                decided_at=now,
                status_reason="Rejected by committee",
            )
            return [application_event(application, "application.rejected")] if moved else []

        if outcome.decision == CommitteeDecision.APPROVED:
            caps = {
                "committee_decision": CommitteeDecision.APPROVED,
                "approved_amount": outcome.approved_amount,
                "approved_tenor_months": outcome.approved_tenor_months,
                "decided_at": now,
            }
            if application.status == ApplicationStatus.COMMITTEE_REVIEW:
                moved = await ApplicationService.transition(
                    db, application.id, [ApplicationStatus.COMMITTEE_REVIEW], ApplicationStatus.APPROVED, **caps
                )
                if moved:
                    return [application_event(
                        application, "application.approved",
                        approved_amount=outcome.approved_amount,
                        approved_tenor_months=outcome.approved_tenor_months,
                    )]
            elif application.status == ApplicationStatus.APPROVED:
                # A late approving review can only tighten the caps
                await ApplicationService.transition(
                    db, application.id, [ApplicationStatus.APPROVED], ApplicationStatus.APPROVED, **caps
                )
            return []

        if outcome.decision == CommitteeDecision.MORE_INFORMATION:
            result = await db.execute(
                update(LoanApplication)
                .where(
                    LoanApplication.id == application.id,
                    LoanApplication.status == ApplicationStatus.COMMITTEE_REVIEW,
                )
                .values(committee_decision=CommitteeDecision.MORE_INFORMATION, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return []
            return [application_event(application, "application.more_information_requested")]

        return []

    @staticmethod
    async def summary(db: AsyncSession, application_id: int) -> dict:
        application = await ApplicationService.get_application(db, application_id)
        reviews = await CommitteeService.get_reviews(db, application.id)
        outcome = aggregate_reviews(
            CommitteeService._votes(reviews),
            application.requested_amount,
            application.tenor_months,
            settings.COMMITTEE_QUORUM,
        )
        return {
            "application_id": application.id,
            "application_status": application.status,
            "committee_decision": application.committee_decision,
            "approved_amount": application.approved_amount,
            "approved_tenor_months": application.approved_tenor_months,
            "decided": outcome.decided,
            "required": outcome.required,
            "reviews": reviews,
        }
