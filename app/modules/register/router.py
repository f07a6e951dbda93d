from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor, require_officer
from app.core.exceptions import CapacityExhausted, PeriodClosed
from app.modules.register import schemas
from app.modules.register.models import LoanStatus
from app.modules.register.services import RegistrationService

router = APIRouter(prefix="/register", tags=["register"])


# ============ Registration ============

@router.post("", response_model=schemas.RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_loan(
    data: schemas.RegistrationRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Allocate monthly capacity for an approved application and register the loan.

    - 201 with the new loan when capacity was available
    - 200 with the existing loan (duplicate=true) when already registered
    - 202 with the queue position when the month is full
    - 409 when the month is closed or allocation kept conflicting
    """
    outcome = await RegistrationService.request_registration(db, data.application_id, data.target_period)

    if outcome.status == "rejected":
        if outcome.reason == "period_closed":
            raise PeriodClosed(outcome.message)
        raise CapacityExhausted(outcome.message)
    if outcome.status == "queued":
        response.status_code = status.HTTP_202_ACCEPTED
    elif outcome.duplicate:
        response.status_code = status.HTTP_200_OK

    return {
        "status": outcome.status,
        "duplicate": outcome.duplicate,
        "loan": outcome.loan,
        "period": outcome.period,
        "queue_position": outcome.queue_position,
        "message": outcome.message,
    }


@router.get("", response_model=schemas.LoanListResponse)
async def list_loans(
    member_id: Optional[str] = None,
    status_filter: Optional[LoanStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """List the loan register; members only see their own loans"""
    if actor.role == "member":
        member_id = actor.id
    loans, total = await RegistrationService.list_loans(db, member_id, status_filter, skip, limit)
    return {"loans": loans, "total": total}


# ============ Lifecycle ============

@router.post("/{application_id}/cancel", response_model=schemas.CancelLoanResponse)
async def cancel_loan(
    application_id: int,
    data: schemas.CancelLoanRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Cancel a loan before disbursement, or pull a queued application.

    - Registered loans give their capacity back to the month
    - Queued applications that now fit are registered
    """
    outcome = await RegistrationService.cancel(db, application_id, data.reason)
    return {
        "application_id": outcome.application_id,
        "loan": outcome.loan,
        "released": outcome.released,
        "admitted_from_queue": [loan.application_id for loan in outcome.drained_loans],
    }


@router.post("/{application_id}/disburse", response_model=schemas.LoanResponse)
async def disburse_loan(
    application_id: int,
    data: schemas.DisburseRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Mark a registered loan as disbursed and generate its deduction schedule"""
    return await RegistrationService.disburse(db, application_id, data.disbursement_date)


# Declared last: references contain slashes (LH/2026/001)
@router.get("/{reference:path}", response_model=schemas.LoanResponse)
async def get_loan(
    reference: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Look up a loan by its register reference"""
    return await RegistrationService.get_by_reference(db, reference)
