from sqlalchemy import Column, Integer, DateTime, Date, Numeric, Enum as SQLEnum, ForeignKey
from sqlalchemy.sql import func
from app.core.database import Base
from app.modules.register.models import DelinquencyStatus


class LoanDelinquencyRecord(Base):
    """A change of a loan's delinquency classification. Append-only."""
    __tablename__ = "loan_delinquency_records"

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loan_register.id"), nullable=False, index=True)
    check_date = Column(Date, nullable=False)

    consecutive_missed = Column(Integer, nullable=False)
    days_overdue = Column(Integer, nullable=False, default=0)
    overdue_amount = Column(Numeric(15, 2), nullable=False, default=0)

    previous_status = Column(SQLEnum(DelinquencyStatus), nullable=False)
    new_status = Column(SQLEnum(DelinquencyStatus), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<LoanDelinquencyRecord(loan={self.loan_id}, {self.previous_status} -> {self.new_status})>"
