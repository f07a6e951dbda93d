from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import Actor, require_officer
from app.modules.delinquency import schemas
from app.modules.delinquency.services import DelinquencyService
from app.modules.register.models import DelinquencyStatus

router = APIRouter(prefix="/delinquency", tags=["delinquency"])


@router.get("", response_model=schemas.DelinquencyListResponse)
async def list_delinquent_loans(
    status_filter: Optional[DelinquencyStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Loans classified watch or worse, with their latest assessment"""
    loans, total = await DelinquencyService.list_delinquent(db, status_filter)
    return {"loans": loans, "total": total}


@router.get("/summary", response_model=schemas.DelinquencySummary)
async def delinquency_summary(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Loan counts per classification and the principal at risk"""
    return await DelinquencyService.summary(db)
