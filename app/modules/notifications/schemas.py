from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any

from app.modules.notifications.models import EventPriority, OutboundEventStatus


class DomainEvent(BaseModel):
    """Event produced by a command and returned with its result"""
    event_type: str
    entity_type: str
    entity_id: str
    recipient: Optional[str] = None
    priority: EventPriority = EventPriority.MEDIUM
    payload: Dict[str, Any] = {}


class OutboundEventResponse(DomainEvent):
    id: int
    status: OutboundEventStatus
    created_at: datetime
    dispatched_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OutboundEventListResponse(BaseModel):
    events: List[OutboundEventResponse]
    total: int


class DispatchAcknowledgement(BaseModel):
    event_ids: List[int]
