from pydantic import BaseModel
from datetime import date
from decimal import Decimal
from typing import List, Dict, Optional

from app.modules.register.models import DelinquencyStatus


class DelinquentLoan(BaseModel):
    loan_id: int
    reference: str
    member_id: str
    delinquency_status: DelinquencyStatus
    consecutive_missed: int
    days_overdue: int
    overdue_amount: Decimal
    last_checked: Optional[date] = None


class DelinquencyListResponse(BaseModel):
    loans: List[DelinquentLoan]
    total: int


class DelinquencySummary(BaseModel):
    counts: Dict[str, int]
    total_overdue_amount: Decimal
    at_risk_principal: Decimal
