from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from app.modules.applications.models import ApplicationStatus, CommitteeDecision
from app.modules.eligibility.schemas import EligibilityResult
from app.modules.loans.models import LoanType


class ApplicationCreate(BaseModel):
    member_id: Optional[str] = Field(None, description="Defaults to the caller")
    loan_type: LoanType
    requested_amount: Decimal = Field(..., gt=0)
    tenor_months: int = Field(..., gt=0)
    purpose: Optional[str] = Field(None, max_length=500)
    target_period: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$", description="yyyy-mm")


class ApplicationResponse(BaseModel):
    id: int
    application_number: str
    member_id: str
    loan_type: LoanType
    requested_amount: Decimal
    tenor_months: int
    interest_rate: Decimal
    purpose: Optional[str] = None
    status: ApplicationStatus
    required_guarantors: int
    nomination_round: int
    committee_decision: CommitteeDecision
    approved_amount: Optional[Decimal] = None
    approved_tenor_months: Optional[int] = None
    target_year: Optional[int] = None
    target_month: Optional[int] = None
    status_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationResponse]
    total: int


class SubmitResponse(BaseModel):
    application: ApplicationResponse
    eligibility: EligibilityResult


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
