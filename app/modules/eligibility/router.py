from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor
from app.modules.eligibility.schemas import EligibilityRequest, EligibilityResult
from app.modules.eligibility.services import EligibilityService

router = APIRouter(prefix="/eligibility", tags=["eligibility"])


@router.post("", response_model=EligibilityResult)
async def check_eligibility(
    request: EligibilityRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Evaluate a prospective loan for a member.

    - Ineligible verdicts are returned with reasons, not as errors
    - Nothing is persisted
    """
    return await EligibilityService.check(
        db, request.member_id, request.amount, request.loan_type, request.tenor_months
    )
