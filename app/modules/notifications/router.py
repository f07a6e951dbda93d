from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import Actor, require_admin
from app.modules.notifications import schemas
from app.modules.notifications.models import OutboundEventStatus
from app.modules.notifications.services import EventOutbox

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=schemas.OutboundEventListResponse)
async def list_events(
    status: OutboundEventStatus = Query(OutboundEventStatus.PENDING),
    event_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Events for the notification service to deliver"""
    events, total = await EventOutbox.list_events(db, status, event_type, limit)
    return {"events": events, "total": total}


@router.post("/dispatched")
async def acknowledge_events(
    data: schemas.DispatchAcknowledgement,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_admin)
):
    """Mark events as handed over"""
    updated = await EventOutbox.mark_dispatched(db, data.event_ids)
    return {"dispatched": updated}
