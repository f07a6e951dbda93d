from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal

from app.core.database import get_db
from app.core.dependencies import Actor, require_officer
from app.modules.deductions import schemas
from app.modules.deductions.models import UploadBatchStatus
from app.modules.deductions.services import (
    DeductionScheduleService, DeductionUploadService, ReconciliationService
)
from app.modules.loans.periods import parse_period

router = APIRouter(prefix="/deductions", tags=["deductions"])


# ============ Schedule ============

@router.post("/schedule/{period}/generate", response_model=schemas.PeriodScheduleResponse)
async def generate_period_schedule(
    period: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Expected payroll deductions for a month.

    - Generates missing schedules for registered and active loans
    - Existing schedules are never regenerated
    """
    year, month = parse_period(period)
    deductions = await DeductionScheduleService.generate_for_period(db, year, month)
    return {
        "period": period,
        "deductions": deductions,
        "total_amount": sum((d["amount"] for d in deductions), Decimal("0.00")),
    }


@router.get("/schedule/{period}/download", response_class=StreamingResponse)
async def download_period_schedule(
    period: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Expected deductions for a month as CSV for payroll"""
    year, month = parse_period(period)
    deductions = await DeductionScheduleService.generate_for_period(db, year, month)
    return StreamingResponse(
        DeductionScheduleService.to_csv(deductions),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="deductions_{period}.csv"'},
    )


# ============ Actuals ============

@router.post("/actual/{period}/upload", response_model=schemas.UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_actual_deductions(
    period: str,
    response: Response,
    file: UploadFile = File(..., description="CSV: loan_reference,amount,source_reference"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Upload what payroll actually deducted.

    - The same file uploaded again resumes after the last stored row
    - 202 when processing stopped at the time limit; upload again to continue
    """
    year, month = parse_period(period)
    content = await file.read()
    result = await DeductionUploadService.upload(db, year, month, content, file.filename)
    if result.batch.status == UploadBatchStatus.PARTIAL:
        response.status_code = status.HTTP_202_ACCEPTED
    return {"batch": result.batch, "inserted_rows": result.inserted_rows, "resumed": result.resumed}


@router.post("/reconcile/{period}", response_model=schemas.ReconciliationReport)
async def reconcile_period(
    period: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """
    Match scheduled deductions against uploaded actuals.

    - Safe to re-run; results are replaced per schedule row
    - Deductions for unknown or unscheduled loans come back as mismatches
    """
    year, month = parse_period(period)
    result = await ReconciliationService.reconcile(db, year, month)
    return {
        "period": result.period,
        "counts": result.counts,
        "total_expected": result.total_expected,
        "total_actual": result.total_actual,
        "items": result.items,
        "mismatches": result.mismatches,
    }


# ============ Restructuring ============

@router.post("/loans/{loan_id}/restructure", response_model=schemas.RestructureResponse)
async def restructure_loan(
    loan_id: int,
    data: schemas.RestructureRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_officer)
):
    """Reschedule the unreconciled balance of a loan over a new tenor"""
    version, outstanding, emi, rows = await DeductionScheduleService.restructure(db, loan_id, data.tenor_months)
    return {
        "loan_id": loan_id,
        "version": version,
        "outstanding_balance": outstanding,
        "monthly_emi": emi,
        "rows": rows,
    }
