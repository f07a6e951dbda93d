from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from app.modules.applications.models import ApplicationStatus, CommitteeDecision
from app.modules.committee.models import ReviewDecision


class ReviewerAssignment(BaseModel):
    reviewer_ids: List[str] = Field(..., min_length=1)


class ReviewSubmission(BaseModel):
    application_id: int
    decision: ReviewDecision
    recommended_amount: Optional[Decimal] = Field(None, gt=0)
    recommended_tenor_months: Optional[int] = Field(None, gt=0)
    credit_score: Optional[int] = None
    risk_rating: Optional[str] = None
    conditions: Optional[str] = None
    comments: Optional[str] = None


class ReviewResponse(BaseModel):
    id: int
    application_id: int
    reviewer_id: str
    decision: ReviewDecision
    credit_score: Optional[int] = None
    risk_rating: Optional[str] = None
    repayment_score: Optional[int] = None
    recommended_amount: Optional[Decimal] = None
    recommended_tenor_months: Optional[int] = None
    conditions: Optional[str] = None
    comments: Optional[str] = None
    assigned_at: datetime
    decided_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommitteeSummary(BaseModel):
    application_id: int
    application_status: ApplicationStatus
    committee_decision: CommitteeDecision
    approved_amount: Optional[Decimal] = None
    approved_tenor_months: Optional[int] = None
    decided: int
    required: int
    reviews: List[ReviewResponse]
