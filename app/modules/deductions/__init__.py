# Deductions module
from app.modules.deductions.models import (
    DeductionScheduleRow, DeductionUploadBatch, ActualDeduction, DeductionReconciliation, ReconciliationStatus
)
from app.modules.deductions.services import DeductionScheduleService, DeductionUploadService, ReconciliationService

__all__ = [
    "DeductionScheduleRow", "DeductionUploadBatch", "ActualDeduction", "DeductionReconciliation",
    "ReconciliationStatus", "DeductionScheduleService", "DeductionUploadService", "ReconciliationService",
]
