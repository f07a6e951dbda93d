from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List

from app.modules.loans.models import LoanType
from app.modules.register.models import LoanStatus, DelinquencyStatus


class RegistrationRequest(BaseModel):
    application_id: int
    target_period: Optional[str] = Field(
        None, pattern=r"^\d{4}-\d{2}$", description="yyyy-mm; defaults to the application's target or the current month"
    )


class LoanResponse(BaseModel):
    id: int
    reference: str
    serial_year: int
    serial_number: int
    application_id: int
    member_id: str
    loan_type: LoanType
    principal: Decimal
    interest_rate: Decimal
    tenor_months: int
    monthly_emi: Decimal
    registration_date: date
    disbursement_date: Optional[date] = None
    maturity_date: date
    status: LoanStatus
    delinquency_status: DelinquencyStatus
    threshold_year: int
    threshold_month: int
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RegistrationResponse(BaseModel):
    status: str  # registered, queued
    duplicate: bool = False
    loan: Optional[LoanResponse] = None
    period: Optional[str] = None
    queue_position: Optional[int] = None
    message: str


class LoanListResponse(BaseModel):
    loans: List[LoanResponse]
    total: int


class CancelLoanRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CancelLoanResponse(BaseModel):
    application_id: int
    loan: Optional[LoanResponse] = None
    released: bool
    admitted_from_queue: List[int] = []


class DisburseRequest(BaseModel):
    disbursement_date: Optional[date] = None
