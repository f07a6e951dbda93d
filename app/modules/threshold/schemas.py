from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from app.modules.threshold.models import ThresholdStatus, QueueEntryStatus


class ThresholdResponse(BaseModel):
    id: int
    year: int
    month: int
    period: str
    maximum_amount: Decimal
    allocated_amount: Decimal
    remaining_amount: Decimal
    carried_forward_amount: Decimal
    total_applications_approved: int
    total_applications_registered: int
    total_applications_queued: int
    status: ThresholdStatus
    utilization_percent: float
    alert_level: int
    version: int
    notes: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None

    class Config:
        from_attributes = True


class ThresholdAdjust(BaseModel):
    maximum_amount: Decimal = Field(..., gt=0)
    expected_version: Optional[int] = Field(None, description="Reject the change if the threshold moved on")
    notes: Optional[str] = Field(None, max_length=1000)


class DrainedEntryResponse(BaseModel):
    application_id: int
    amount: Decimal

    class Config:
        from_attributes = True


class ThresholdAdjustResponse(BaseModel):
    threshold: ThresholdResponse
    admitted_from_queue: List[DrainedEntryResponse] = []


class QueueEntryResponse(BaseModel):
    id: int
    position: int
    application_id: int
    amount: Decimal
    submitted_at: datetime
    carried_over: bool
    original_threshold_id: Optional[int] = None
    status: QueueEntryStatus


class QueueResponse(BaseModel):
    period: str
    entries: List[QueueEntryResponse]
    total_queued_amount: Decimal


class ThresholdAlertResponse(BaseModel):
    period: str
    utilization_percent: float
    level: str
    remaining_amount: Decimal


class YearlyReportResponse(BaseModel):
    year: int
    total_maximum: Decimal
    total_allocated: Decimal
    average_utilization_percent: float
    total_registered: int
    months: List[ThresholdResponse]
