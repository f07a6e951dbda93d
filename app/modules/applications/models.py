from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Enum as SQLEnum, JSON
from sqlalchemy.sql import func
from app.core.database import Base
from app.modules.loans.models import LoanType
import enum


class ApplicationStatus(str, enum.Enum):
    """Lifecycle of a loan application"""
    DRAFT = "draft"
    AWAITING_GUARANTORS = "awaiting_guarantors"
    COMMITTEE_REVIEW = "committee_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ADMITTED = "admitted"        # capacity granted, register row pending
    QUEUED = "queued"            # waiting for monthly capacity
    REGISTERED = "registered"
    CANCELLED = "cancelled"


class CommitteeDecision(str, enum.Enum):
    """Aggregate of the committee reviews"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MORE_INFORMATION = "more_information"


# Statuses from which the applicant can still withdraw
WITHDRAWABLE_STATUSES = (
    ApplicationStatus.DRAFT,
    ApplicationStatus.AWAITING_GUARANTORS,
    ApplicationStatus.COMMITTEE_REVIEW,
    ApplicationStatus.APPROVED,
)


class LoanApplication(Base):
    """
    A member's request for a loan, from draft to registration.
    Frozen once registered; the register entry becomes authoritative.
    """
    __tablename__ = "loan_applications"

    id = Column(Integer, primary_key=True, index=True)
    application_number = Column(String(20), unique=True, nullable=False, index=True)
    member_id = Column(String(50), nullable=False, index=True)

    loan_type = Column(SQLEnum(LoanType), nullable=False)
    requested_amount = Column(Numeric(15, 2), nullable=False)
    tenor_months = Column(Integer, nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False)  # annual, percent
    purpose = Column(Text, nullable=True)

    status = Column(SQLEnum(ApplicationStatus), default=ApplicationStatus.DRAFT, nullable=False, index=True)

    # Guarantors
    required_guarantors = Column(Integer, default=0, nullable=False)
    nomination_round = Column(Integer, default=1, nullable=False)

    # Committee outcome
    committee_decision = Column(SQLEnum(CommitteeDecision), default=CommitteeDecision.PENDING, nullable=False)
    approved_amount = Column(Numeric(15, 2), nullable=True)
    approved_tenor_months = Column(Integer, nullable=True)

    # Capacity period requested; current month when empty
    target_year = Column(Integer, nullable=True)
    target_month = Column(Integer, nullable=True)

    # Audit copy of the verdict at submission, never read back as authority
    eligibility_snapshot = Column(JSON, nullable=True)
    status_reason = Column(Text, nullable=True)

    submitted_at = Column(DateTime, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_frozen(self) -> bool:
        return self.status == ApplicationStatus.REGISTERED

    def __repr__(self):
        return f"<LoanApplication(id={self.id}, number={self.application_number}, status={self.status})>"
