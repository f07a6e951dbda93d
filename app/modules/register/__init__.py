# Loan register module
from app.modules.register.models import LoanRegister, LoanSerialCounter, LoanStatus, DelinquencyStatus

__all__ = ["LoanRegister", "LoanSerialCounter", "LoanStatus", "DelinquencyStatus"]
