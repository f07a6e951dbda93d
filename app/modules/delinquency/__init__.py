# Delinquency module
from app.modules.delinquency.models import LoanDelinquencyRecord
from app.modules.delinquency.services import DelinquencyService, classify, count_consecutive_missed

__all__ = ["LoanDelinquencyRecord", "DelinquencyService", "classify", "count_consecutive_missed"]
