from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Numeric, Enum as SQLEnum, JSON,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class UploadBatchStatus(str, enum.Enum):
    PROCESSING = "processing"
    PARTIAL = "partial"        # stopped before the last row; re-upload resumes
    COMPLETED = "completed"


class ReconciliationStatus(str, enum.Enum):
    MATCHED = "matched"
    PARTIALLY_PAID = "partially_paid"
    OVERPAID = "overpaid"
    UNMATCHED = "unmatched"


class DeductionScheduleRow(Base):
    """
    One expected payroll deduction. Rows are never edited; a restructure
    supersedes the unreconciled tail and writes a new version.
    """
    __tablename__ = "deduction_schedule_rows"
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", "version", name="uq_schedule_installment"),
    )

    id = Column(Integer, primary_key=True, index=True)
    loan_id = Column(Integer, ForeignKey("loan_register.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)

    amount = Column(Numeric(15, 2), nullable=False)
    principal_component = Column(Numeric(15, 2), nullable=False)
    interest_component = Column(Numeric(15, 2), nullable=False)
    opening_balance = Column(Numeric(15, 2), nullable=False)
    closing_balance = Column(Numeric(15, 2), nullable=False)

    version = Column(Integer, nullable=False, default=1)
    superseded = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DeductionScheduleRow(loan={self.loan_id}, n={self.installment_number}, amount={self.amount})>"


class DeductionUploadBatch(Base):
    """An uploaded payroll file, identified by its content checksum"""
    __tablename__ = "deduction_upload_batches"
    __table_args__ = (
        UniqueConstraint("period_year", "period_month", "checksum", name="uq_upload_batch_checksum"),
    )

    id = Column(Integer, primary_key=True, index=True)
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=False)
    filename = Column(String(255), nullable=True)

    total_rows = Column(Integer, nullable=False, default=0)
    last_committed_row = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(UploadBatchStatus), default=UploadBatchStatus.PROCESSING, nullable=False)
    error_rows = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<DeductionUploadBatch(checksum={self.checksum[:8]}, row={self.last_committed_row}/{self.total_rows})>"


class ActualDeduction(Base):
    """A deduction as reported by payroll. Append-only."""
    __tablename__ = "actual_deductions"
    __table_args__ = (
        UniqueConstraint("batch_id", "row_number", name="uq_actual_batch_row"),
    )

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("deduction_upload_batches.id"), nullable=False, index=True)
    row_number = Column(Integer, nullable=False)

    loan_reference = Column(String(30), nullable=False)
    loan_id = Column(Integer, ForeignKey("loan_register.id"), nullable=True, index=True)  # None if unknown
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    source_reference = Column(String(100), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ActualDeduction(loan={self.loan_reference}, amount={self.amount})>"


class DeductionReconciliation(Base):
    """Latest comparison of a schedule row with what payroll deducted"""
    __tablename__ = "deduction_reconciliations"

    id = Column(Integer, primary_key=True, index=True)
    schedule_row_id = Column(Integer, ForeignKey("deduction_schedule_rows.id"), unique=True, nullable=False)
    loan_id = Column(Integer, ForeignKey("loan_register.id"), nullable=False, index=True)
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)

    expected_amount = Column(Numeric(15, 2), nullable=False)
    actual_amount = Column(Numeric(15, 2), nullable=False)
    variance = Column(Numeric(15, 2), nullable=False)  # actual - expected
    status = Column(SQLEnum(ReconciliationStatus), nullable=False, index=True)
    reconciled_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<DeductionReconciliation(row={self.schedule_row_id}, status={self.status})>"
