from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict

from app.modules.deductions.models import UploadBatchStatus, ReconciliationStatus


class ScheduleRowResponse(BaseModel):
    id: int
    loan_id: int
    installment_number: int
    period_year: int
    period_month: int
    due_date: date
    amount: Decimal
    principal_component: Decimal
    interest_component: Decimal
    opening_balance: Decimal
    closing_balance: Decimal
    version: int

    class Config:
        from_attributes = True


class PeriodDeduction(BaseModel):
    loan_reference: str
    member_id: str
    installment_number: int
    due_date: date
    amount: Decimal


class PeriodScheduleResponse(BaseModel):
    period: str
    deductions: List[PeriodDeduction]
    total_amount: Decimal


class UploadBatchResponse(BaseModel):
    id: int
    period_year: int
    period_month: int
    checksum: str
    filename: Optional[str] = None
    total_rows: int
    last_committed_row: int
    status: UploadBatchStatus
    error_rows: Optional[List[Dict]] = None

    class Config:
        from_attributes = True


class UploadResponse(BaseModel):
    batch: UploadBatchResponse
    inserted_rows: int
    resumed: bool


class ReconciliationItem(BaseModel):
    schedule_row_id: int
    loan_reference: str
    expected_amount: Decimal
    actual_amount: Decimal
    variance: Decimal
    status: ReconciliationStatus


class MismatchItem(BaseModel):
    code: str
    loan_reference: str
    amount: Decimal
    reason: str


class ReconciliationReport(BaseModel):
    period: str
    counts: Dict[str, int]
    total_expected: Decimal
    total_actual: Decimal
    items: List[ReconciliationItem]
    mismatches: List[MismatchItem]


class RestructureRequest(BaseModel):
    tenor_months: int = Field(..., gt=0, description="Installments remaining after the restructure")


class RestructureResponse(BaseModel):
    loan_id: int
    version: int
    outstanding_balance: Decimal
    monthly_emi: Decimal
    rows: List[ScheduleRowResponse]
