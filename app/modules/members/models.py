from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Numeric
from sqlalchemy.sql import func
from app.core.database import Base


class MemberCreditProfile(Base):
    """
    Read-only replica of a member's financial standing.
    Owned by the membership/savings system and synced in; the lending
    engine only reads it.
    """
    __tablename__ = "member_credit_profiles"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=True)

    total_savings = Column(Numeric(15, 2), nullable=False, default=0)
    free_equity = Column(Numeric(15, 2), nullable=False, default=0)  # savings not pledged as guarantee
    monthly_contribution = Column(Numeric(15, 2), nullable=False, default=0)
    membership_date = Column(Date, nullable=False)

    active_loan_exposure = Column(Numeric(15, 2), nullable=False, default=0)
    has_active_delinquency = Column(Boolean, default=False, nullable=False)
    repayment_score = Column(Integer, nullable=True)  # 0-100
    credit_score = Column(Integer, nullable=True)
    risk_rating = Column(String(20), nullable=True)  # LOW, MEDIUM, HIGH

    is_active = Column(Boolean, default=True, nullable=False)
    synced_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<MemberCreditProfile(member_id={self.member_id}, savings={self.total_savings})>"
