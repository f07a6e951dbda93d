from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from app.core.config import settings
from app.modules.eligibility.evaluator import MemberSnapshot, evaluate_eligibility
from app.modules.eligibility.schemas import EligibilityResult
from app.modules.loans.models import LoanType
from app.modules.loans.products import get_product_rules
from app.modules.members.models import MemberCreditProfile
from app.modules.members.services import MemberProfileService

logger = logging.getLogger(__name__)


def snapshot_from_profile(profile: MemberCreditProfile) -> MemberSnapshot:
    return MemberSnapshot(
        member_id=profile.member_id,
        total_savings=Decimal(profile.total_savings),
        monthly_contribution=Decimal(profile.monthly_contribution),
        membership_date=profile.membership_date,
        active_loan_exposure=Decimal(profile.active_loan_exposure or 0),
        has_active_delinquency=bool(profile.has_active_delinquency),
        is_active=bool(profile.is_active),
    )


class EligibilityService:
    """Loads the member snapshot and runs the evaluator"""

    @staticmethod
    async def check(
        db: AsyncSession,
        member_id: str,
        amount: Decimal,
        loan_type: LoanType,
        tenor_months: Optional[int] = None,
        evaluation_date: Optional[date] = None,
    ) -> EligibilityResult:
        profile = await MemberProfileService.get_profile(db, member_id)
        result = evaluate_eligibility(
            snapshot_from_profile(profile),
            amount,
            tenor_months or settings.DEFAULT_TENOR_MONTHS,
            get_product_rules(loan_type),
            evaluation_date or date.today(),
        )
        logger.info(
            f"Eligibility for member {member_id}: {amount} {LoanType(loan_type).value} -> "
            f"{'eligible' if result.is_eligible else 'ineligible'}"
        )
        return result
