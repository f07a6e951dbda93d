"""
Tests for committee review aggregation
"""
import pytest
from decimal import Decimal

from app.core.config import settings
from app.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from app.modules.applications.models import ApplicationStatus, CommitteeDecision
from app.modules.committee.aggregation import ReviewVote, aggregate_reviews
from app.modules.committee.models import ReviewDecision
from app.modules.committee.schemas import ReviewSubmission
from app.modules.committee.services import CommitteeService


class TestAggregation:
    """Tests for the pure aggregate rule"""

    @pytest.mark.unit
    def test_most_conservative_amount_wins(self):
        votes = [
            ReviewVote(ReviewDecision.APPROVED),
            ReviewVote(ReviewDecision.APPROVED_WITH_CONDITIONS, Decimal("450000"), 10),
        ]

        outcome = aggregate_reviews(votes, Decimal("500000"), 12)

        assert outcome.decision == CommitteeDecision.APPROVED
        assert outcome.approved_amount == Decimal("450000")
        assert outcome.approved_tenor_months == 10

    @pytest.mark.unit
    def test_single_rejection_rejects(self):
        votes = [ReviewVote(ReviewDecision.APPROVED), ReviewVote(ReviewDecision.REJECTED)]

        outcome = aggregate_reviews(votes, Decimal("500000"), 12)

        assert outcome.decision == CommitteeDecision.REJECTED

    @pytest.mark.unit
    def test_more_information_keeps_it_open(self):
        votes = [ReviewVote(ReviewDecision.APPROVED), ReviewVote(ReviewDecision.REQUIRES_MORE_INFORMATION)]

        outcome = aggregate_reviews(votes, Decimal("500000"), 12)

        assert outcome.decision == CommitteeDecision.MORE_INFORMATION

    @pytest.mark.unit
    def test_waits_for_every_reviewer_without_quorum(self):
        votes = [ReviewVote(ReviewDecision.APPROVED), ReviewVote(ReviewDecision.PENDING)]

        outcome = aggregate_reviews(votes, Decimal("500000"), 12)

        assert outcome.decision == CommitteeDecision.PENDING
        assert (outcome.decided, outcome.required) == (1, 2)

    @pytest.mark.unit
    def test_quorum_allows_early_decision(self):
        votes = [ReviewVote(ReviewDecision.APPROVED), ReviewVote(ReviewDecision.PENDING)]

        outcome = aggregate_reviews(votes, Decimal("500000"), 12, quorum=1)

        assert outcome.decision == CommitteeDecision.APPROVED
        assert outcome.approved_amount == Decimal("500000")

    @pytest.mark.unit
    def test_no_reviewers_is_pending(self):
        assert aggregate_reviews([], Decimal("500000"), 12).decision == CommitteeDecision.PENDING


class TestCommitteeService:
    """Tests for recording reviews against an application"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_two_reviewers_approve_at_lower_amount(self, db_session, make_application):
        application = await make_application(Decimal("500000"), status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1", "C-2"])

        first = await CommitteeService.submit_review(db_session, "C-1", ReviewSubmission(
            application_id=application.id, decision=ReviewDecision.APPROVED, recommended_amount=Decimal("500000"),
        ))
        assert first.application.status == ApplicationStatus.COMMITTEE_REVIEW

        second = await CommitteeService.submit_review(db_session, "C-2", ReviewSubmission(
            application_id=application.id,
            decision=ReviewDecision.APPROVED_WITH_CONDITIONS,
            recommended_amount=Decimal("450000"),
            conditions="Salary domiciliation",
        ))

        assert second.application.status == ApplicationStatus.APPROVED
        assert second.application.committee_decision == CommitteeDecision.APPROVED
        assert second.application.approved_amount == Decimal("450000")
        assert second.events[0].event_type == "application.approved"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rejection_is_final(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1", "C-2"])

        await CommitteeService.submit_review(db_session, "C-1", ReviewSubmission(
            application_id=application.id, decision=ReviewDecision.REJECTED, comments="Insufficient history",
        ))
        outcome = await CommitteeService.submit_review(db_session, "C-2", ReviewSubmission(
            application_id=application.id, decision=ReviewDecision.APPROVED,
        ))

        assert outcome.application.status == ApplicationStatus.REJECTED
        assert outcome.application.committee_decision == CommitteeDecision.REJECTED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reviewer_decides_once(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1", "C-2"])
        submission = ReviewSubmission(application_id=application.id, decision=ReviewDecision.APPROVED)
        await CommitteeService.submit_review(db_session, "C-1", submission)

        with pytest.raises(InvalidStateTransition):
            await CommitteeService.submit_review(db_session, "C-1", submission)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unassigned_reviewer(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1"])

        with pytest.raises(NotFoundError):
            await CommitteeService.submit_review(db_session, "C-9", ReviewSubmission(
                application_id=application.id, decision=ReviewDecision.APPROVED,
            ))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_applicant_cannot_review(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW, member_id="M-500")

        with pytest.raises(ValidationError):
            await CommitteeService.assign_reviewers(db_session, application.id, ["M-500"])

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_is_not_a_decision(self, db_session, make_application):
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1"])

        with pytest.raises(ValidationError):
            await CommitteeService.submit_review(db_session, "C-1", ReviewSubmission(
                application_id=application.id, decision=ReviewDecision.PENDING,
            ))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_late_information_request_on_approved_application(
        self, db_session, make_application, monkeypatch
    ):
        monkeypatch.setattr(settings, "COMMITTEE_QUORUM", 1)
        application = await make_application(status=ApplicationStatus.COMMITTEE_REVIEW)
        await CommitteeService.assign_reviewers(db_session, application.id, ["C-1", "C-2"])
        approved = await CommitteeService.submit_review(db_session, "C-1", ReviewSubmission(
            application_id=application.id, decision=ReviewDecision.APPROVED,
        ))
        assert approved.application.status == ApplicationStatus.APPROVED

        outcome = await CommitteeService.submit_review(db_session, "C-2", ReviewSubmission(
            application_id=application.id, decision=ReviewDecision.REQUIRES_MORE_INFORMATION,
        ))

        assert outcome.events == []
        assert outcome.application.status == ApplicationStatus.APPROVED
        assert outcome.application.committee_decision == CommitteeDecision.APPROVED
