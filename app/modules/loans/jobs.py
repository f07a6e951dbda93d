"""
Background jobs run by the periodic scheduler.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from app.core.config import settings
from app.core.scheduler import PeriodicTask
from app.modules.delinquency.services import DelinquencyService, ScanResult
from app.modules.register.services import RegistrationService
from app.modules.threshold.rollover import RolloverResult, run_monthly_rollover

logger = logging.getLogger(__name__)

ROLLOVER_TASK = "monthly_threshold_rollover"
DELINQUENCY_TASK = "delinquency_scan"


async def rollover_job(db: AsyncSession) -> RolloverResult:
    """Roll the threshold over and register whatever the new month admits"""
    result = await run_monthly_rollover(db)
    loans = await RegistrationService.register_drained(db, result.drained)
    if loans:
        logger.info(f"Rollover registered {len(loans)} queued applications")
    return result


async def delinquency_job(db: AsyncSession) -> ScanResult:
    return await DelinquencyService.scan(db)


def build_periodic_tasks() -> List[PeriodicTask]:
    return [
        PeriodicTask(
            ROLLOVER_TASK,
            settings.ROLLOVER_CHECK_INTERVAL_SECONDS,
            rollover_job,
            use_redis_lock=settings.SCHEDULER_USE_REDIS_LOCK,
        ),
        PeriodicTask(
            DELINQUENCY_TASK,
            settings.DELINQUENCY_SCAN_INTERVAL_SECONDS,
            delinquency_job,
            use_redis_lock=settings.SCHEDULER_USE_REDIS_LOCK,
        ),
    ]
