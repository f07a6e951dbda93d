from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor, require_committee, require_officer
from app.modules.committee import schemas
from app.modules.committee.services import CommitteeService

router = APIRouter(prefix="/committee", tags=["committee"])


@router.post("/{application_id}/assign", response_model=List[schemas.ReviewResponse])
async def assign_reviewers(
    application_id: int,
    data: schemas.ReviewerAssignment,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Assign committee members to review an application"""
    return await CommitteeService.assign_reviewers(db, application_id, data.reviewer_ids)


@router.post("/reviews", response_model=schemas.CommitteeSummary)
async def submit_review(
    data: schemas.ReviewSubmission,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_committee)
):
    """
    Submit the caller's decision on an application.

    - requires_more_information can later be followed by a final decision
    - Final decisions cannot be changed
    """
    await CommitteeService.submit_review(db, actor.id, data)
    return await CommitteeService.summary(db, data.application_id)


@router.get("/{application_id}", response_model=schemas.CommitteeSummary)
async def get_committee_summary(
    application_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Reviews and aggregate decision for an application"""
    return await CommitteeService.summary(db, application_id)
