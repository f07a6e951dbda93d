from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor, require_officer
from app.core.exceptions import ConsentExpiredOrInvalid, InvalidStateTransition
from app.modules.guarantors import schemas
from app.modules.guarantors.models import ConsentStatus
from app.modules.guarantors.services import GuarantorService, consent_to_dict

router = APIRouter(tags=["guarantors"])


# ============ Nomination (officers) ============

@router.post(
    "/applications/{application_id}/guarantors",
    response_model=schemas.NominationResponse,
    status_code=status.HTTP_201_CREATED
)
async def nominate_guarantor(
    application_id: int,
    data: schemas.GuarantorNomination,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Nominate a guarantor for the current round.

    - Guarantor must have enough free equity and spare guarantee slots
    - The consent token is returned once and sent to the guarantor
    """
    result = await GuarantorService.nominate(
        db, application_id, data.guarantor_member_id, data.guaranteed_amount
    )
    return {
        "consent": consent_to_dict(result.consent, datetime.utcnow()),
        "consent_token": result.token,
    }


@router.get("/applications/{application_id}/guarantors", response_model=schemas.GuarantorSetResponse)
async def get_guarantor_set(
    application_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Guarantors of the current nomination round"""
    return await GuarantorService.guarantor_set(db, application_id)


# ============ Consent (token holders) ============

@router.get("/guarantor-consent/{token}", response_model=schemas.ConsentRequestView)
async def view_consent_request(token: str, db: AsyncSession = Depends(get_db)):
    """Show the request behind a consent link"""
    return await GuarantorService.view_request(db, token)


@router.post("/guarantor-consent/{token}", response_model=schemas.ConsentDecisionResponse)
async def respond_to_consent_request(
    token: str,
    data: schemas.ConsentDecisionRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Approve, decline or revoke a guarantee.

    - Expired requests answer 410
    - Already-resolved requests answer 409 and change nothing
    """
    outcome = await GuarantorService.respond(db, token, data.decision, data.notes)
    if not outcome.accepted:
        if outcome.status == ConsentStatus.EXPIRED:
            raise ConsentExpiredOrInvalid(outcome.reason)
        raise InvalidStateTransition(outcome.reason)
    return {
        "accepted": outcome.accepted,
        "status": outcome.status,
        "reason": outcome.reason,
        "application_status": outcome.application_status,
        "guarantors_complete": outcome.guarantors_complete,
        "nomination_reopened": outcome.nomination_reopened,
    }
