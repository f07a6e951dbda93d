from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional


class MemberProfileSync(BaseModel):
    """Payload pushed by the membership system"""
    full_name: Optional[str] = None
    total_savings: Decimal = Field(..., ge=0)
    free_equity: Optional[Decimal] = Field(None, ge=0)
    monthly_contribution: Decimal = Field(..., ge=0)
    membership_date: date
    active_loan_exposure: Decimal = Field(Decimal("0"), ge=0)
    has_active_delinquency: bool = False
    repayment_score: Optional[int] = Field(None, ge=0, le=100)
    credit_score: Optional[int] = None
    risk_rating: Optional[str] = None
    is_active: bool = True


class MemberProfileResponse(MemberProfileSync):
    member_id: str
    free_equity: Decimal
    synced_at: datetime

    class Config:
        from_attributes = True
