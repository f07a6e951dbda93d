from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal
from typing import List

from app.core.database import get_db
from app.core.dependencies import Actor, get_current_actor, require_admin
from app.modules.loans.periods import parse_period
from app.modules.register.services import RegistrationService
from app.modules.threshold import schemas
from app.modules.threshold.models import AlertLevel
from app.modules.threshold.services import ThresholdService

router = APIRouter(prefix="/threshold", tags=["threshold"])


# ============ Reports ============
# Static paths are declared before /{period}

@router.get("/alerts", response_model=List[schemas.ThresholdAlertResponse])
async def get_alerts(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Open periods at or above the warning utilization"""
    thresholds = await ThresholdService.active_alerts(db)
    return [
        {
            "period": t.period,
            "utilization_percent": t.utilization_percent,
            "level": AlertLevel(t.alert_level).name.lower(),
            "remaining_amount": t.remaining_amount,
        }
        for t in thresholds
    ]


@router.get("/report/{year}", response_model=schemas.YearlyReportResponse)
async def get_yearly_report(
    year: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Per-month utilization for a year"""
    return await ThresholdService.yearly_report(db, year)


# ============ Periods ============

@router.get("/{period}", response_model=schemas.ThresholdResponse)
async def get_threshold(
    period: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor)
):
    """
    Get a month's capacity.

    - Current and future months are opened on first read
    - Past months that were never opened return 409 period_closed
    """
    year, month = parse_period(period)
    return await ThresholdService.get_or_create(db, year, month)


@router.put("/{period}", response_model=schemas.ThresholdAdjustResponse)
async def adjust_threshold(
    period: str,
    data: schemas.ThresholdAdjust,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """
    Change a month's maximum.

    - Cannot go below the amount already allocated
    - Pass expected_version to fail with 409 if someone else changed it first
    - Raising the maximum admits queued applications that now fit
    """
    year, month = parse_period(period)
    threshold, drained = await ThresholdService.adjust_maximum(
        db, year, month, data.maximum_amount, data.expected_version, data.notes
    )
    await RegistrationService.register_drained(db, drained)
    return {"threshold": threshold, "admitted_from_queue": drained}


@router.get("/{period}/queue", response_model=schemas.QueueResponse)
async def get_queue(
    period: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Applications waiting for capacity, in admission order"""
    year, month = parse_period(period)
    entries = await ThresholdService.list_queue(db, year, month)
    return {
        "period": period,
        "entries": [
            {
                "id": entry.id,
                "position": position,
                "application_id": entry.application_id,
                "amount": entry.amount,
                "submitted_at": entry.submitted_at,
                "carried_over": entry.carried_over,
                "original_threshold_id": entry.original_threshold_id,
                "status": entry.status,
            }
            for position, entry in enumerate(entries, start=1)
        ],
        "total_queued_amount": sum((Decimal(e.amount) for e in entries), Decimal("0.00")),
    }
