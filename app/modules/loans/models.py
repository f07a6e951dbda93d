import enum


class LoanType(str, enum.Enum):
    """Loan products offered to members"""
    NORMAL = "normal"
    COMMODITY = "commodity"
    CAR = "car"
