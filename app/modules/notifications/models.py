from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class EventPriority(str, enum.Enum):
    """Priority hint for the notification collaborator"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OutboundEventStatus(str, enum.Enum):
    """Delivery handoff state"""
    PENDING = "pending"
    DISPATCHED = "dispatched"


class OutboundEvent(Base):
    """
    Domain event waiting to be picked up by the external notification service.
    Written in the same transaction as the state change that produced it.
    """
    __tablename__ = "outbound_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)  # e.g. 'guarantor.consent_requested'
    priority = Column(SQLEnum(EventPriority), default=EventPriority.MEDIUM, nullable=False)

    # Subject of the event
    entity_type = Column(String(50), nullable=False)  # e.g. 'application', 'loan', 'threshold'
    entity_id = Column(String(50), nullable=False)
    recipient = Column(String(100), nullable=True)  # member id or role

    payload = Column(JSON, nullable=True)

    status = Column(SQLEnum(OutboundEventStatus), default=OutboundEventStatus.PENDING, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    dispatched_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<OutboundEvent(id={self.id}, type={self.event_type}, status={self.status})>"
