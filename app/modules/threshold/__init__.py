# Threshold module
from app.modules.threshold.models import MonthlyThreshold, AllocationQueueEntry, ThresholdStatus
from app.modules.threshold.services import ThresholdService, AllocationOutcome, AllocationStatus, DrainedEntry

__all__ = [
    "MonthlyThreshold", "AllocationQueueEntry", "ThresholdStatus",
    "ThresholdService", "AllocationOutcome", "AllocationStatus", "DrainedEntry",
]
