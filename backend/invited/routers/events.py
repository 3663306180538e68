import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.invalidation import StatsInvalidationBus
from ..core.permissions import Authorizer, is_creator
from ..core.security import get_authorizer, get_stats_bus
from ..db import events as events_db
from ..schemas.common import paginate
from ..schemas.events import EventCreate, EventUpdate, EventPublic, EventList

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

def event_out(row: dict, authz: Authorizer) -> EventPublic:
    return EventPublic(
        **row,
        can_manage=authz.can_manage_event(row),
        can_delete=authz.can_delete_event(row),
    )

async def can_see_event(event: dict, authz: Authorizer) -> bool:
    actor = authz.actor
    if authz.has_permission("events", "manage_all") or is_creator(actor, event):
        return True
    if event.get("is_public"):
        return True
    return await events_db.is_attendee(event["id"], actor.id)

async def load_event(event_id: str, authz: Authorizer) -> dict:
    """Fetch an event the caller may read, or 404."""

    authz.require("events", "read")
    event = await events_db.get_event(event_id)
    if not event or not await can_see_event(event, authz):
        raise HTTPException(status_code=404, detail="Event not found or you do not have access")
    return event


@router.get("", response_model=EventList)
async def list_events(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    authz: Authorizer = Depends(get_authorizer),
):
    authz.require("events", "read")
    scope = None if authz.has_permission("events", "manage_all") else authz.actor.id
    rows, total = await events_db.list_events(
        user_id=scope, status=status_filter, search=search, limit=limit, offset=(page - 1) * limit
    )
    return EventList(events=[event_out(r, authz) for r in rows], pagination=paginate(page, limit, total))

@router.post("", response_model=EventPublic, status_code=status.HTTP_201_CREATED)
async def create_event(payload: EventCreate, authz: Authorizer = Depends(get_authorizer)):
    authz.require("events", "create")
    row = await events_db.create_event(authz.actor.id, payload.model_dump())
    logger.info("Event %s created by %s", row["id"], authz.actor.id)
    return event_out(row, authz)

@router.get("/{event_id}", response_model=EventPublic)
async def get_event(event_id: str, authz: Authorizer = Depends(get_authorizer)):
    return event_out(await load_event(event_id, authz), authz)

@router.patch("/{event_id}", response_model=EventPublic)
async def update_event(event_id: str, payload: EventUpdate, authz: Authorizer = Depends(get_authorizer)):
    event = await load_event(event_id, authz)
    authz.require("events", "update", event)

    fields = payload.model_dump(exclude_unset=True)
    start = fields.get("start_date", event["start_date"])
    end = fields.get("end_date", event["end_date"])
    if end <= start:
        raise HTTPException(status_code=400, detail="End date must be after start date")

    row = await events_db.update_event(event_id, fields)
    return event_out(row, authz)

@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    authz: Authorizer = Depends(get_authorizer),
    bus: StatsInvalidationBus = Depends(get_stats_bus),
):
    event = await load_event(event_id, authz)
    authz.require("events", "delete", event)
    await events_db.delete_event(event_id)
    bus.forget(event_id)
    logger.info("Event %s deleted by %s", event_id, authz.actor.id)

@router.post("/{event_id}/rsvp", response_model=dict)
async def rsvp(event_id: str, authz: Authorizer = Depends(get_authorizer)):
    authz.require("events", "rsvp")
    await load_event(event_id, authz)
    if await events_db.join_event(event_id, authz.actor.id) == events_db.EVENT_FULL:
        raise HTTPException(status_code=403, detail="Event is full")
    return {"message": "RSVP recorded", "event_id": event_id}

@router.delete("/{event_id}/rsvp", response_model=dict)
async def cancel_rsvp(event_id: str, authz: Authorizer = Depends(get_authorizer)):
    authz.require("events", "rsvp")
    removed = await events_db.remove_attendee(event_id, authz.actor.id)
    if not removed:
        raise HTTPException(status_code=404, detail="You are not attending this event")
    return {"message": "RSVP cancelled", "event_id": event_id}
