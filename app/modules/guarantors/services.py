from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
import logging

from app.core.config import settings
from app.core.exceptions import (
    ConsentExpiredOrInvalid, IneligibleError, InvalidStateTransition, ValidationError
)
from app.core.security import generate_consent_token, hash_token
from app.modules.applications.models import LoanApplication, ApplicationStatus
from app.modules.applications.services import ApplicationService, application_event
from app.modules.guarantors.models import GuarantorConsent, ConsentStatus, NEGATIVE_STATUSES
from app.modules.guarantors.schemas import ConsentDecision
from app.modules.loans.calculations import to_money
from app.modules.members.services import MemberProfileService
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox

logger = logging.getLogger(__name__)

# Applications on which an approved guarantee still counts against the guarantor
GUARANTEE_HOLDING_STATUSES = (
    ApplicationStatus.AWAITING_GUARANTORS,
    ApplicationStatus.COMMITTEE_REVIEW,
    ApplicationStatus.APPROVED,
    ApplicationStatus.ADMITTED,
    ApplicationStatus.QUEUED,
    ApplicationStatus.REGISTERED,
)

# Decision -> (statuses it may be applied to, resulting status)
DECISION_TRANSITIONS = {
    ConsentDecision.APPROVE: ((ConsentStatus.PENDING,), ConsentStatus.APPROVED),
    ConsentDecision.DECLINE: ((ConsentStatus.PENDING,), ConsentStatus.DECLINED),
    ConsentDecision.REVOKE: ((ConsentStatus.PENDING, ConsentStatus.APPROVED), ConsentStatus.REVOKED),
}

OPEN_FOR_GUARANTORS = (ApplicationStatus.AWAITING_GUARANTORS, ApplicationStatus.COMMITTEE_REVIEW)


@dataclass
class NominationResult:
    consent: GuarantorConsent
    token: str
    events: List[DomainEvent] = field(default_factory=list)


@dataclass
class ConsentOutcome:
    """Result of a guarantor's response; refusals leave state untouched"""
    accepted: bool
    status: ConsentStatus
    application_status: ApplicationStatus
    reason: Optional[str] = None
    guarantors_complete: bool = False
    nomination_reopened: bool = False
    events: List[DomainEvent] = field(default_factory=list)


def consent_to_dict(consent: GuarantorConsent, now: datetime) -> dict:
    return {
        "id": consent.id,
        "application_id": consent.application_id,
        "guarantor_member_id": consent.guarantor_member_id,
        "nomination_round": consent.nomination_round,
        "guaranteed_amount": consent.guaranteed_amount,
        "status": consent.effective_status(now),
        "requested_at": consent.requested_at,
        "expires_at": consent.expires_at,
        "responded_at": consent.responded_at,
        "notes": consent.notes,
    }


class GuarantorService:
    """Nomination and token-based consent for loan guarantors"""

    @staticmethod
    async def _find_by_token(db: AsyncSession, token: str) -> GuarantorConsent:
        result = await db.execute(
            select(GuarantorConsent)
            .where(GuarantorConsent.token_hash == hash_token(token))
            .execution_options(populate_existing=True)
        )
        consent = result.scalar_one_or_none()
        if consent is None:
            raise ConsentExpiredOrInvalid("Consent link is invalid or has been replaced")
        return consent

    @staticmethod
    async def round_consents(db: AsyncSession, application_id: int, nomination_round: int) -> List[GuarantorConsent]:
        result = await db.execute(
            select(GuarantorConsent)
            .where(
                GuarantorConsent.application_id == application_id,
                GuarantorConsent.nomination_round == nomination_round,
            )
            .order_by(GuarantorConsent.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _persist_expiry(db: AsyncSession, application_id: int, nomination_round: int, now: datetime) -> int:
        """Write EXPIRED for pending consents of the round that are past due"""
        result = await db.execute(
            update(GuarantorConsent)
            .where(
                GuarantorConsent.application_id == application_id,
                GuarantorConsent.nomination_round == nomination_round,
                GuarantorConsent.status == ConsentStatus.PENDING,
                GuarantorConsent.expires_at <= now,
            )
            .values(status=ConsentStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def _reopen_nomination(
        db: AsyncSession, application: LoanApplication, nomination_round: int, now: datetime
    ) -> List[DomainEvent]:
        """
        A negative outcome voids the whole round: remaining consents are
        revoked and the application goes back to nomination in a new round.
        """
        await db.execute(
            update(GuarantorConsent)
            .where(
                GuarantorConsent.application_id == application.id,
                GuarantorConsent.nomination_round == nomination_round,
                GuarantorConsent.status.in_([ConsentStatus.PENDING, ConsentStatus.APPROVED]),
            )
            .values(status=ConsentStatus.REVOKED, responded_at=now, notes="Nomination round invalidated")
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(
            update(LoanApplication)
            .where(
                LoanApplication.id == application.id,
                LoanApplication.nomination_round == nomination_round,
                LoanApplication.status.in_(list(OPEN_FOR_GUARANTORS)),
            )
            .values(
                nomination_round=nomination_round + 1,
                status=ApplicationStatus.AWAITING_GUARANTORS,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return []
        logger.info(
            f"Guarantor round {nomination_round} of {application.application_number} invalidated, "
            f"nomination reopened"
        )
        return [application_event(
            application, "application.guarantor_nomination_reopened", previous_round=nomination_round
        )]

    @staticmethod
    async def _count_active_guarantees(db: AsyncSession, guarantor_member_id: str) -> int:
        result = await db.execute(
            select(func.count(GuarantorConsent.id))
            .join(LoanApplication, LoanApplication.id == GuarantorConsent.application_id)
            .where(
                GuarantorConsent.guarantor_member_id == guarantor_member_id,
                GuarantorConsent.status == ConsentStatus.APPROVED,
                LoanApplication.status.in_(list(GUARANTEE_HOLDING_STATUSES)),
            )
        )
        return result.scalar() or 0

    @staticmethod
    async def _check_guarantor(db: AsyncSession, guarantor_member_id: str, amount: Decimal) -> None:
        profile = await MemberProfileService.find_profile(db, guarantor_member_id)
        if profile is None:
            raise IneligibleError(
                f"Guarantor {guarantor_member_id} is not eligible",
                reasons=["Guarantor has no credit profile"],
            )

        reasons = []
        if not profile.is_active:
            reasons.append("Guarantor membership is not active")
        if profile.has_active_delinquency:
            reasons.append("Guarantor has an active delinquent loan")
        if Decimal(profile.free_equity) < amount:
            reasons.append(f"Free equity of {to_money(profile.free_equity)} does not cover {amount}")
        active = await GuarantorService._count_active_guarantees(db, guarantor_member_id)
        if active >= settings.MAX_ACTIVE_GUARANTEES:
            reasons.append(f"Guarantor already backs {active} loans (limit {settings.MAX_ACTIVE_GUARANTEES})")

        if reasons:
            raise IneligibleError(f"Guarantor {guarantor_member_id} is not eligible", reasons=reasons)

    @staticmethod
    async def nominate(
        db: AsyncSession,
        application_id: int,
        guarantor_member_id: str,
        guaranteed_amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> NominationResult:
        """Nominate a guarantor in the current round and mint their consent token"""
        now = now or datetime.utcnow()
        application = await ApplicationService.get_application(db, application_id)
        if application.status != ApplicationStatus.AWAITING_GUARANTORS:
            raise InvalidStateTransition(
                f"Application {application.application_number} is not accepting guarantors "
                f"({application.status.value})"
            )
        if guarantor_member_id == application.member_id:
            raise ValidationError("An applicant cannot guarantee their own loan")

        # Lapsed requests in the current round void it before anyone new is added
        if await GuarantorService._persist_expiry(db, application.id, application.nomination_round, now):
            events = await GuarantorService._reopen_nomination(db, application, application.nomination_round, now)
            EventOutbox.record(db, events)
            await db.commit()
            application = await ApplicationService.get_application(db, application_id)

        consents = await GuarantorService.round_consents(db, application.id, application.nomination_round)
        active = [c for c in consents if c.status in (ConsentStatus.PENDING, ConsentStatus.APPROVED)]
        if any(c.guarantor_member_id == guarantor_member_id for c in consents):
            raise ValidationError(f"Member {guarantor_member_id} was already nominated in this round")
        if len(active) >= application.required_guarantors:
            raise ValidationError(f"All {application.required_guarantors} guarantor slots are already filled")

        amount = to_money(
            guaranteed_amount
            if guaranteed_amount is not None
            else Decimal(application.requested_amount) / application.required_guarantors
        )
        await GuarantorService._check_guarantor(db, guarantor_member_id, amount)

        token = generate_consent_token()
        consent = GuarantorConsent(
            application_id=application.id,
            guarantor_member_id=guarantor_member_id,
            nomination_round=application.nomination_round,
            guaranteed_amount=amount,
            token_hash=hash_token(token),
            status=ConsentStatus.PENDING,
            requested_at=now,
            expires_at=now + timedelta(days=settings.GUARANTOR_CONSENT_EXPIRY_DAYS),
        )
        db.add(consent)
        await db.flush()

        events = [DomainEvent(
            event_type="guarantor.consent_requested",
            entity_type="guarantor_consent",
            entity_id=str(consent.id),
            recipient=guarantor_member_id,
            payload={
                "application_number": application.application_number,
                "applicant_member_id": application.member_id,
                "guaranteed_amount": amount,
                "expires_at": consent.expires_at,
                "consent_token": token,
            },
        )]
        EventOutbox.record(db, events)
        await db.commit()
        await db.refresh(consent)

        logger.info(
            f"Nominated guarantor {guarantor_member_id} for {application.application_number} "
            f"(round {consent.nomination_round}, amount {amount})"
        )
        return NominationResult(consent=consent, token=token, events=events)

    @staticmethod
    async def guarantor_set(db: AsyncSession, application_id: int, now: Optional[datetime] = None) -> dict:
        """Current round with effective statuses; reading never writes"""
        now = now or datetime.utcnow()
        application = await ApplicationService.get_application(db, application_id)
        consents = await GuarantorService.round_consents(db, application.id, application.nomination_round)
        statuses = [c.effective_status(now) for c in consents]
        approved = statuses.count(ConsentStatus.APPROVED)
        return {
            "application_id": application.id,
            "nomination_round": application.nomination_round,
            "required_guarantors": application.required_guarantors,
            "approved": approved,
            "is_complete": GuarantorService._complete(statuses, application.required_guarantors),
            "consents": [consent_to_dict(c, now) for c in consents],
        }

    @staticmethod
    def _complete(statuses: List[ConsentStatus], required: int) -> bool:
        if any(s in NEGATIVE_STATUSES for s in statuses):
            return False
        return statuses.count(ConsentStatus.APPROVED) >= required

    @staticmethod
    async def is_complete(db: AsyncSession, application: LoanApplication, now: Optional[datetime] = None) -> bool:
        if application.required_guarantors == 0:
            return True
        now = now or datetime.utcnow()
        consents = await GuarantorService.round_consents(db, application.id, application.nomination_round)
        return GuarantorService._complete([c.effective_status(now) for c in consents], application.required_guarantors)

    @staticmethod
    async def view_request(db: AsyncSession, token: str, now: Optional[datetime] = None) -> dict:
        """What the guarantor sees; an overdue request reads as expired"""
        now = now or datetime.utcnow()
        consent = await GuarantorService._find_by_token(db, token)
        application = await ApplicationService.get_application(db, consent.application_id)
        return {
            "application_number": application.application_number,
            "applicant_member_id": application.member_id,
            "loan_type": application.loan_type,
            "requested_amount": application.requested_amount,
            "tenor_months": application.tenor_months,
            "guaranteed_amount": consent.guaranteed_amount,
            "status": consent.effective_status(now),
            "expires_at": consent.expires_at,
        }

    @staticmethod
    async def respond(
        db: AsyncSession,
        token: str,
        decision: ConsentDecision,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ConsentOutcome:
        """
        Apply a guarantor's decision.

        Replayed or stale tokens are refused without any state change.
        An overdue pending consent is persisted as expired, which voids
        the round, and the decision is refused.
        """
        now = now or datetime.utcnow()
        consent = await GuarantorService._find_by_token(db, token)
        application = await ApplicationService.get_application(db, consent.application_id)
        consent_id, nomination_round = consent.id, consent.nomination_round
        allowed_from, target = DECISION_TRANSITIONS[ConsentDecision(decision)]

        def refused(reason: str, status: ConsentStatus = None, **extra) -> ConsentOutcome:
            logger.warning(f"Refused {ConsentDecision(decision).value} on consent {consent_id}: {reason}")
            return ConsentOutcome(
                accepted=False,
                status=status or consent.effective_status(now),
                application_status=application.status,
                reason=reason,
                **extra,
            )

        if consent.effective_status(now) == ConsentStatus.EXPIRED and consent.status == ConsentStatus.PENDING:
            await GuarantorService._persist_expiry(db, application.id, nomination_round, now)
            events = await GuarantorService._reopen_nomination(db, application, nomination_round, now)
            EventOutbox.record(db, events)
            await db.commit()
            application = await ApplicationService.get_application(db, application.id)
            return refused(
                "Consent request has expired",
                status=ConsentStatus.EXPIRED,
                nomination_reopened=bool(events),
                events=events,
            )

        if consent.status not in allowed_from:
            return refused(f"Consent is already {consent.status.value}")
        if nomination_round != application.nomination_round:
            return refused("Nomination round has been closed")
        if application.status not in OPEN_FOR_GUARANTORS:
            return refused(f"Application is {application.status.value}; guarantor decisions are closed")

        result = await db.execute(
            update(GuarantorConsent)
            .where(
                GuarantorConsent.id == consent_id,
                GuarantorConsent.status.in_(list(allowed_from)),
                or_(GuarantorConsent.status == ConsentStatus.APPROVED, GuarantorConsent.expires_at > now),
            )
            .values(status=target, responded_at=now, notes=notes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            consent = await GuarantorService._find_by_token(db, token)
            application = await ApplicationService.get_application(db, consent.application_id)
            return refused("Consent was resolved by another request")

        events = [application_event(
            application,
            f"guarantor.consent_{target.value}",
            guarantor_member_id=consent.guarantor_member_id,
            nomination_round=nomination_round,
        )]
        complete = reopened = False

        if target in NEGATIVE_STATUSES:
            reopen_events = await GuarantorService._reopen_nomination(db, application, nomination_round, now)
            reopened = bool(reopen_events)
            events.extend(reopen_events)
        else:
            await GuarantorService._persist_expiry(db, application.id, nomination_round, now)
            consents = await GuarantorService.round_consents(db, application.id, nomination_round)
            statuses = [c.status for c in consents]
            if any(s in NEGATIVE_STATUSES for s in statuses):
                reopen_events = await GuarantorService._reopen_nomination(db, application, nomination_round, now)
                reopened = bool(reopen_events)
                events.extend(reopen_events)
            elif GuarantorService._complete(statuses, application.required_guarantors):
                complete = await ApplicationService.transition(
                    db, application.id,
                    [ApplicationStatus.AWAITING_GUARANTORS], ApplicationStatus.COMMITTEE_REVIEW,
                )
                if complete:
                    events.append(application_event(application, "application.guarantors_complete"))

        EventOutbox.record(db, events)
        await db.commit()

        application = await ApplicationService.get_application(db, application.id)
        logger.info(
            f"Consent {consent_id} -> {target.value}; application {application.application_number} "
            f"is {application.status.value}"
        )
        return ConsentOutcome(
            accepted=True,
            status=target,
            application_status=application.status,
            guarantors_complete=complete,
            nomination_reopened=reopened,
            events=events,
        )
