from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor
from app.modules.applications import schemas
from app.modules.applications.models import ApplicationStatus
from app.modules.applications.services import ApplicationService

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("", response_model=schemas.ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_application(
    data: schemas.ApplicationCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Create a draft loan application.

    - Members apply for themselves; officers may pass member_id
    - Interest rate and guarantor count come from the product
    """
    member_id = data.member_id if data.member_id and actor.role != "member" else actor.id
    return await ApplicationService.create_application(db, member_id, data)


@router.get("", response_model=schemas.ApplicationListResponse)
async def list_applications(
    member_id: Optional[str] = None,
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """List applications; members only see their own"""
    if actor.role == "member":
        member_id = actor.id
    applications, total = await ApplicationService.list_applications(db, member_id, status_filter, skip, limit)
    return {"applications": applications, "total": total}


@router.get("/{application_id}", response_model=schemas.ApplicationResponse)
async def get_application(
    application_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Get application details"""
    return await ApplicationService.get_application(db, application_id)


@router.post("/{application_id}/submit", response_model=schemas.SubmitResponse)
async def submit_application(
    application_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Submit a draft for processing.

    - Runs the eligibility evaluation; ineligible drafts get 422 with reasons
    - Moves to guarantor nomination, or to committee review when none are required
    """
    result = await ApplicationService.submit(db, application_id)
    return {"application": result.application, "eligibility": result.eligibility}


@router.post("/{application_id}/cancel", response_model=schemas.ApplicationResponse)
async def withdraw_application(
    application_id: int,
    data: schemas.CancelRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Withdraw an application before capacity is allocated"""
    return await ApplicationService.withdraw(db, application_id, data.reason)
