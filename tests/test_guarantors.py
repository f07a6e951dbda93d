"""
Tests for guarantor nomination and token-based consent
"""
import pytest
from decimal import Decimal
from datetime import datetime, timedelta

from sqlalchemy import select

from app.core.exceptions import ConsentExpiredOrInvalid, IneligibleError, ValidationError
from app.modules.applications.models import ApplicationStatus
from app.modules.applications.schemas import ApplicationCreate
from app.modules.applications.services import ApplicationService
from app.modules.guarantors.models import GuarantorConsent, ConsentStatus
from app.modules.guarantors.schemas import ConsentDecision
from app.modules.guarantors.services import GuarantorService
from app.modules.loans.models import LoanType
from app.modules.notifications.models import OutboundEvent


@pytest.fixture
async def awaiting_application(db_session, make_member):
    """Submitted commodity loan (one guarantor) with two candidate guarantors"""
    await make_member("M-100")
    await make_member("G-1", total_savings=Decimal("1000000"))
    await make_member("G-2", total_savings=Decimal("1000000"))
    application = await ApplicationService.create_application(
        db_session, "M-100",
        ApplicationCreate(loan_type=LoanType.COMMODITY, requested_amount=Decimal("300000"), tenor_months=12),
    )
    result = await ApplicationService.submit(db_session, application.id)
    assert result.application.status == ApplicationStatus.AWAITING_GUARANTORS
    return result.application


class TestNomination:
    """Tests for nominating guarantors"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_nominate_issues_token(self, db_session, awaiting_application):
        result = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")

        assert result.token
        assert result.consent.status == ConsentStatus.PENDING
        assert result.consent.guaranteed_amount == Decimal("300000.00")
        assert result.consent.token_hash != result.token
        assert result.events[0].event_type == "guarantor.consent_requested"
        assert result.events[0].payload["consent_token"] == result.token

        stored = (await db_session.execute(
            select(OutboundEvent).where(OutboundEvent.event_type == "guarantor.consent_requested")
        )).scalars().all()
        assert len(stored) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_applicant_cannot_guarantee_own_loan(self, db_session, awaiting_application):
        with pytest.raises(ValidationError):
            await GuarantorService.nominate(db_session, awaiting_application.id, "M-100")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_guarantor_needs_free_equity(self, db_session, awaiting_application, make_member):
        await make_member("G-3", total_savings=Decimal("50000"))

        with pytest.raises(IneligibleError) as exc_info:
            await GuarantorService.nominate(db_session, awaiting_application.id, "G-3")

        assert any("Free equity" in reason for reason in exc_info.value.reasons)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_guarantor_without_profile(self, db_session, awaiting_application):
        with pytest.raises(IneligibleError):
            await GuarantorService.nominate(db_session, awaiting_application.id, "G-404")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_slots_are_limited(self, db_session, awaiting_application):
        await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")

        with pytest.raises(ValidationError):
            await GuarantorService.nominate(db_session, awaiting_application.id, "G-2")


class TestConsent:
    """Tests for guarantor responses"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_approval_completes_guarantor_set(self, db_session, awaiting_application):
        nomination = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")

        outcome = await GuarantorService.respond(db_session, nomination.token, ConsentDecision.APPROVE)

        assert outcome.accepted is True
        assert outcome.status == ConsentStatus.APPROVED
        assert outcome.guarantors_complete is True
        assert outcome.application_status == ApplicationStatus.COMMITTEE_REVIEW

        application = await ApplicationService.get_application(db_session, awaiting_application.id)
        assert await GuarantorService.is_complete(db_session, application) is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_replayed_token_changes_nothing(self, db_session, awaiting_application):
        nomination = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")
        await GuarantorService.respond(db_session, nomination.token, ConsentDecision.APPROVE)

        replay = await GuarantorService.respond(db_session, nomination.token, ConsentDecision.APPROVE)
        decline = await GuarantorService.respond(db_session, nomination.token, ConsentDecision.DECLINE)

        assert replay.accepted is False
        assert decline.accepted is False
        consent = (await db_session.execute(
            select(GuarantorConsent).execution_options(populate_existing=True)
        )).scalar_one()
        assert consent.status == ConsentStatus.APPROVED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_decline_reopens_nomination(self, db_session, awaiting_application):
        nomination = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")

        outcome = await GuarantorService.respond(
            db_session, nomination.token, ConsentDecision.DECLINE, notes="Not this time"
        )

        assert outcome.accepted is True
        assert outcome.status == ConsentStatus.DECLINED
        assert outcome.nomination_reopened is True
        application = await ApplicationService.get_application(db_session, awaiting_application.id)
        assert application.nomination_round == 2
        assert application.status == ApplicationStatus.AWAITING_GUARANTORS

        # A new round accepts the same guarantor again
        second = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")
        assert second.consent.nomination_round == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_revoking_approval_returns_to_nomination(self, db_session, awaiting_application):
        nomination = await GuarantorService.nominate(db_session, awaiting_application.id, "G-1")
        await GuarantorService.respond(db_session, nomination.token, ConsentDecision.APPROVE)

        outcome = await GuarantorService.respond(db_session, nomination.token, ConsentDecision.REVOKE)

        assert outcome.accepted is True
        assert outcome.status == ConsentStatus.REVOKED
        assert outcome.application_status == ApplicationStatus.AWAITING_GUARANTORS

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_request_reads_as_expired(self, db_session, awaiting_application):
        requested = datetime.utcnow() - timedelta(days=8)
        nomination = await GuarantorService.nominate(
            db_session, awaiting_application.id, "G-1", now=requested
        )

        view = await GuarantorService.view_request(db_session, nomination.token)

        assert view["status"] == ConsentStatus.EXPIRED
        # Reading does not persist anything
        consent = (await db_session.execute(
            select(GuarantorConsent).execution_options(populate_existing=True)
        )).scalar_one()
        assert consent.status == ConsentStatus.PENDING

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_responding_after_expiry_is_refused(self, db_session, awaiting_application):
        requested = datetime.utcnow() - timedelta(days=8)
        nomination = await GuarantorService.nominate(
            db_session, awaiting_application.id, "G-1", now=requested
        )

        outcome = await GuarantorService.respond(db_session, nomination.token, ConsentDecision.APPROVE)

        assert outcome.accepted is False
        assert outcome.status == ConsentStatus.EXPIRED
        assert outcome.nomination_reopened is True
        application = await ApplicationService.get_application(db_session, awaiting_application.id)
        assert application.nomination_round == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session, awaiting_application):
        with pytest.raises(ConsentExpiredOrInvalid):
            await GuarantorService.respond(db_session, "not-a-token", ConsentDecision.APPROVE)


class TestConsentEndpoints:
    """Tests for the public consent link"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_consent_link_round_trip(self, client, awaiting_application, officer_headers):
        response = await client.post(
            f"/loans/applications/{awaiting_application.id}/guarantors",
            json={"guarantor_member_id": "G-1"},
            headers=officer_headers,
        )
        assert response.status_code == 201
        token = response.json()["consent_token"]

        view = await client.get(f"/loans/guarantor-consent/{token}")
        assert view.status_code == 200
        assert view.json()["status"] == "pending"

        approve = await client.post(f"/loans/guarantor-consent/{token}", json={"decision": "approve"})
        assert approve.status_code == 200
        assert approve.json()["guarantors_complete"] is True

        replay = await client.post(f"/loans/guarantor-consent/{token}", json={"decision": "approve"})
        assert replay.status_code == 409
        assert replay.json()["code"] == "invalid_state_transition"
