from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Numeric, Enum as SQLEnum,
    ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class ThresholdStatus(str, enum.Enum):
    """Monthly threshold state; CLOSED is terminal"""
    OPEN = "open"
    EXHAUSTED = "exhausted"
    CLOSED = "closed"


class QueueEntryStatus(str, enum.Enum):
    """Allocation queue entry state"""
    QUEUED = "queued"
    ADMITTED = "admitted"
    WITHDRAWN = "withdrawn"
    RELEASED = "released"        # capacity handed back after admission


class AlertLevel(int, enum.Enum):
    NONE = 0
    WARNING = 1
    CRITICAL = 2


class MonthlyThreshold(Base):
    """
    Lending ceiling for one calendar month.
    remaining_amount always equals maximum_amount - allocated_amount and is
    only changed through guarded single-statement updates.
    """
    __tablename__ = "monthly_thresholds"
    __table_args__ = (
        UniqueConstraint("year", "month", name="uq_threshold_period"),
        CheckConstraint("remaining_amount >= 0", name="ck_threshold_remaining_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    maximum_amount = Column(Numeric(15, 2), nullable=False)
    allocated_amount = Column(Numeric(15, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(15, 2), nullable=False)
    carried_forward_amount = Column(Numeric(15, 2), nullable=False, default=0)
    carry_forward_applied = Column(Boolean, nullable=False, default=False)

    total_applications_approved = Column(Integer, nullable=False, default=0)
    total_applications_registered = Column(Integer, nullable=False, default=0)
    total_applications_queued = Column(Integer, nullable=False, default=0)  # currently waiting

    status = Column(SQLEnum(ThresholdStatus), default=ThresholdStatus.OPEN, nullable=False, index=True)
    alert_level = Column(Integer, nullable=False, default=AlertLevel.NONE.value)
    version = Column(Integer, nullable=False, default=1)

    notes = Column(Text, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    closed_by = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def utilization_percent(self) -> float:
        if not self.maximum_amount:
            return 0.0
        return round(float(self.allocated_amount) / float(self.maximum_amount) * 100, 2)

    def __repr__(self):
        return f"<MonthlyThreshold({self.period}, remaining={self.remaining_amount}, status={self.status})>"


class AllocationQueueEntry(Base):
    """
    Allocation of a period's capacity to one application.
    Direct admissions are recorded as already admitted; waiting entries are
    served strictly in order: carried-over entries first, then by
    submission time, then by application id.
    """
    __tablename__ = "allocation_queue_entries"

    id = Column(Integer, primary_key=True, index=True)
    threshold_id = Column(Integer, ForeignKey("monthly_thresholds.id"), nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("loan_applications.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)

    submitted_at = Column(DateTime, nullable=False)
    carried_over = Column(Boolean, nullable=False, default=False)
    original_threshold_id = Column(Integer, ForeignKey("monthly_thresholds.id"), nullable=True)

    status = Column(SQLEnum(QueueEntryStatus), default=QueueEntryStatus.QUEUED, nullable=False, index=True)
    resolved_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<AllocationQueueEntry(application={self.application_id}, amount={self.amount}, status={self.status})>"
