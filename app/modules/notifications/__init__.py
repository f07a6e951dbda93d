# Notifications module (outbound domain events)
from app.modules.notifications.models import OutboundEvent, OutboundEventStatus, EventPriority
from app.modules.notifications.schemas import DomainEvent
from app.modules.notifications.services import EventOutbox

__all__ = ["OutboundEvent", "OutboundEventStatus", "EventPriority", "DomainEvent", "EventOutbox"]
