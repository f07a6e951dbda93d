from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from app.core.exceptions import NotFoundError
from app.modules.members.models import MemberCreditProfile
from app.modules.members.schemas import MemberProfileSync

logger = logging.getLogger(__name__)


class MemberProfileService:
    """Access to the replicated member credit profiles"""

    @staticmethod
    async def find_profile(db: AsyncSession, member_id: str) -> Optional[MemberCreditProfile]:
        result = await db.execute(
            select(MemberCreditProfile).where(MemberCreditProfile.member_id == member_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_profile(db: AsyncSession, member_id: str) -> MemberCreditProfile:
        """Get a profile or raise NotFoundError"""
        profile = await MemberProfileService.find_profile(db, member_id)
        if profile is None:
            raise NotFoundError(f"Member {member_id} has no credit profile")
        return profile

    @staticmethod
    async def sync_profile(db: AsyncSession, member_id: str, data: MemberProfileSync) -> MemberCreditProfile:
        """Insert or replace the replica row for a member"""
        profile = await MemberProfileService.find_profile(db, member_id)
        values = data.model_dump()
        if values.get("free_equity") is None:
            values["free_equity"] = values["total_savings"]

        if profile is None:
            profile = MemberCreditProfile(member_id=member_id, **values)
            db.add(profile)
        else:
            for field, value in values.items():
                setattr(profile, field, value)

        await db.commit()
        await db.refresh(profile)
        logger.info(f"Synced credit profile for member {member_id}")
        return profile
