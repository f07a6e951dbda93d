from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Enum as SQLEnum, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class ReviewDecision(str, enum.Enum):
    """Individual reviewer decision"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPROVED_WITH_CONDITIONS = "approved_with_conditions"
    REQUIRES_MORE_INFORMATION = "requires_more_information"


TERMINAL_DECISIONS = (
    ReviewDecision.APPROVED,
    ReviewDecision.REJECTED,
    ReviewDecision.APPROVED_WITH_CONDITIONS,
)


class CommitteeReview(Base):
    """
    One reviewer's assessment of one application.
    Immutable once the reviewer records a terminal decision.
    """
    __tablename__ = "committee_reviews"
    __table_args__ = (
        UniqueConstraint("application_id", "reviewer_id", name="uq_review_reviewer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("loan_applications.id"), nullable=False, index=True)
    reviewer_id = Column(String(50), nullable=False, index=True)

    decision = Column(SQLEnum(ReviewDecision), default=ReviewDecision.PENDING, nullable=False)

    # Snapshot of the member's standing at review time
    credit_score = Column(Integer, nullable=True)
    risk_rating = Column(String(20), nullable=True)
    repayment_score = Column(Integer, nullable=True)

    recommended_amount = Column(Numeric(15, 2), nullable=True)
    recommended_tenor_months = Column(Integer, nullable=True)
    conditions = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)

    assigned_at = Column(DateTime, server_default=func.now(), nullable=False)
    decided_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.decision in TERMINAL_DECISIONS

    def __repr__(self):
        return f"<CommitteeReview(id={self.id}, application={self.application_id}, decision={self.decision})>"
