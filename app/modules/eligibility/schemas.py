from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from app.modules.loans.models import LoanType


class EligibilityRequest(BaseModel):
    member_id: str
    amount: Decimal = Field(..., gt=0)
    loan_type: LoanType = LoanType.NORMAL
    tenor_months: Optional[int] = Field(None, gt=0)


class EligibilityBasis(BaseModel):
    """Numbers behind a verdict, kept for audit"""
    requested_amount: Decimal
    tenor_months: int
    interest_rate: Decimal
    required_savings: Decimal
    actual_savings: Decimal
    savings_multiplier: Decimal
    membership_duration_months: int
    required_membership_months: int
    monthly_emi: Decimal
    monthly_contribution: Decimal
    deduction_rate: Optional[Decimal] = None
    max_deduction_rate: Decimal
    active_loan_exposure: Decimal
    has_active_delinquency: bool
    maximum_eligible_amount: Decimal
    limiting_factor: str


class EligibilityResult(BaseModel):
    member_id: str
    loan_type: LoanType
    evaluation_date: date
    is_eligible: bool
    meets_savings_requirement: bool
    meets_membership_duration: bool
    meets_deduction_rate_requirement: bool
    reasons: List[str] = []
    basis: EligibilityBasis
