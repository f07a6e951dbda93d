from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Enum as SQLEnum, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class ConsentStatus(str, enum.Enum):
    """Guarantor consent state; only APPROVED may later become REVOKED"""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    REVOKED = "revoked"


NEGATIVE_STATUSES = (ConsentStatus.DECLINED, ConsentStatus.EXPIRED, ConsentStatus.REVOKED)


class GuarantorConsent(Base):
    """
    One guarantor's consent for one application within a nomination round.
    The consent token itself is never stored, only its SHA-256 digest.
    """
    __tablename__ = "guarantor_consents"
    __table_args__ = (
        UniqueConstraint("application_id", "guarantor_member_id", "nomination_round", name="uq_consent_round"),
    )

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("loan_applications.id"), nullable=False, index=True)
    guarantor_member_id = Column(String(50), nullable=False, index=True)
    nomination_round = Column(Integer, nullable=False, default=1)

    guaranteed_amount = Column(Numeric(15, 2), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)

    status = Column(SQLEnum(ConsentStatus), default=ConsentStatus.PENDING, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    requested_at = Column(DateTime, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)

    def effective_status(self, now) -> ConsentStatus:
        """Pending consents past their expiry read as expired before it is persisted"""
        if self.status == ConsentStatus.PENDING and self.expires_at is not None and now >= self.expires_at:
            return ConsentStatus.EXPIRED
        return self.status

    def __repr__(self):
        return f"<GuarantorConsent(id={self.id}, application={self.application_id}, status={self.status})>"
