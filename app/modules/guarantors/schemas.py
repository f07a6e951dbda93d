from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from app.modules.applications.models import ApplicationStatus
from app.modules.guarantors.models import ConsentStatus
from app.modules.loans.models import LoanType


class ConsentDecision(str, Enum):
    APPROVE = "approve"
    DECLINE = "decline"
    REVOKE = "revoke"


class GuarantorNomination(BaseModel):
    guarantor_member_id: str
    guaranteed_amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to an equal share")


class ConsentResponse(BaseModel):
    """Consent as seen by officers; status is the effective one"""
    id: int
    application_id: int
    guarantor_member_id: str
    nomination_round: int
    guaranteed_amount: Decimal
    status: ConsentStatus
    requested_at: datetime
    expires_at: datetime
    responded_at: Optional[datetime] = None
    notes: Optional[str] = None


class NominationResponse(BaseModel):
    consent: ConsentResponse
    consent_token: str = Field(..., description="Shown once; delivered to the guarantor")


class GuarantorSetResponse(BaseModel):
    application_id: int
    nomination_round: int
    required_guarantors: int
    approved: int
    is_complete: bool
    consents: List[ConsentResponse]


class ConsentRequestView(BaseModel):
    """What the guarantor sees when opening the consent link"""
    application_number: str
    applicant_member_id: str
    loan_type: LoanType
    requested_amount: Decimal
    tenor_months: int
    guaranteed_amount: Decimal
    status: ConsentStatus
    expires_at: datetime


class ConsentDecisionRequest(BaseModel):
    decision: ConsentDecision
    notes: Optional[str] = Field(None, max_length=500)


class ConsentDecisionResponse(BaseModel):
    accepted: bool
    status: ConsentStatus
    reason: Optional[str] = None
    application_status: ApplicationStatus
    guarantors_complete: bool
    nomination_reopened: bool
