from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor, require_admin
from app.modules.members.schemas import MemberProfileSync, MemberProfileResponse
from app.modules.members.services import MemberProfileService

router = APIRouter(prefix="/members", tags=["members"])


@router.get("/{member_id}/profile", response_model=MemberProfileResponse)
async def get_member_profile(
    member_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """Get the replicated credit profile of a member"""
    return await MemberProfileService.get_profile(db, member_id)


@router.put("/{member_id}/profile", response_model=MemberProfileResponse)
async def sync_member_profile(
    member_id: str,
    data: MemberProfileSync,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Replica feed from the membership system"""
    return await MemberProfileService.sync_profile(db, member_id, data)
