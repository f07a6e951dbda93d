from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Text, Numeric, Enum as SQLEnum,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.sql import func
from app.core.database import Base
from app.modules.loans.models import LoanType
import enum


class LoanStatus(str, enum.Enum):
    REGISTERED = "registered"
    ACTIVE = "active"          # disbursed, deductions running
    CANCELLED = "cancelled"
    CLOSED = "closed"


class DelinquencyStatus(str, enum.Enum):
    CURRENT = "current"
    WATCH = "watch"
    DELINQUENT = "delinquent"
    DEFAULT_CANDIDATE = "default_candidate"


class LoanSerialCounter(Base):
    """Last serial issued per calendar year"""
    __tablename__ = "loan_serial_counters"

    year = Column(Integer, primary_key=True, autoincrement=False)
    last_value = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<LoanSerialCounter(year={self.year}, last={self.last_value})>"


class LoanRegister(Base):
    """The official loan record, one per admitted application"""
    __tablename__ = "loan_register"
    __table_args__ = (
        UniqueConstraint("serial_year", "serial_number", name="uq_loan_serial"),
    )

    id = Column(Integer, primary_key=True, index=True)
    serial_year = Column(Integer, nullable=False)
    serial_number = Column(Integer, nullable=False)
    reference = Column(String(30), unique=True, index=True, nullable=False)  # LH/2026/001

    application_id = Column(Integer, ForeignKey("loan_applications.id"), unique=True, nullable=False)
    member_id = Column(String(50), index=True, nullable=False)
    loan_type = Column(SQLEnum(LoanType), nullable=False)

    principal = Column(Numeric(15, 2), nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False)
    tenor_months = Column(Integer, nullable=False)
    monthly_emi = Column(Numeric(15, 2), nullable=False)

    registration_date = Column(Date, nullable=False)
    disbursement_date = Column(Date, nullable=True)
    maturity_date = Column(Date, nullable=False)

    status = Column(SQLEnum(LoanStatus), default=LoanStatus.REGISTERED, nullable=False, index=True)
    delinquency_status = Column(
        SQLEnum(DelinquencyStatus), default=DelinquencyStatus.CURRENT, nullable=False, index=True
    )

    threshold_year = Column(Integer, nullable=False)
    threshold_month = Column(Integer, nullable=False)

    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<LoanRegister(reference={self.reference}, principal={self.principal}, status={self.status})>"
