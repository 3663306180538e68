import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.permissions import Authorizer, is_creator
from ..core.security import get_authorizer
from ..db import events as events_db
from ..db import polls as polls_db
from ..schemas.common import paginate
from ..schemas.polls import PollCreate, PollUpdate, VoteRequest, PollPublic, PollList

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/polls", tags=["polls"])

def poll_out(row: dict, authz: Authorizer) -> PollPublic:
    return PollPublic(
        **row,
        can_manage=authz.can_manage_poll(row),
        can_delete=authz.can_delete_poll(row),
    )

def _scope(authz: Authorizer) -> Optional[str]:
    return None if authz.is_admin() else authz.actor.id

async def load_poll(poll_id: str, authz: Authorizer) -> dict:
    authz.require("polls", "read")
    poll = await polls_db.get_poll(poll_id, visible_to=_scope(authz))
    if not poll:
        raise HTTPException(status_code=404, detail="Poll not found")
    return poll


@router.get("", response_model=PollList)
async def list_polls(
    event_id: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    authz: Authorizer = Depends(get_authorizer),
):
    authz.require("polls", "read")
    rows, total = await polls_db.list_polls(
        visible_to=_scope(authz), event_id=event_id, limit=limit, offset=(page - 1) * limit
    )
    return PollList(polls=[poll_out(r, authz) for r in rows], pagination=paginate(page, limit, total))

@router.post("", response_model=PollPublic, status_code=status.HTTP_201_CREATED)
async def create_poll(payload: PollCreate, authz: Authorizer = Depends(get_authorizer)):
    authz.require("polls", "create")

    options = [o.strip() for o in payload.options if o.strip()]
    if len(options) < 2:
        raise HTTPException(status_code=400, detail="Poll must have at least 2 options")

    if payload.event_id:
        event = await events_db.get_event(payload.event_id)
        if not event:
            raise HTTPException(status_code=404, detail="Event not found")
        if not authz.is_admin() and not is_creator(authz.actor, event):
            raise HTTPException(status_code=403, detail="You can only create polls for events you organize")

    row = await polls_db.create_poll(authz.actor.id, payload.model_dump(exclude={"options"}), options)
    logger.info("Poll %s created by %s", row["id"], authz.actor.id)
    return poll_out(row, authz)

@router.get("/{poll_id}", response_model=PollPublic)
async def get_poll(poll_id: str, authz: Authorizer = Depends(get_authorizer)):
    return poll_out(await load_poll(poll_id, authz), authz)

@router.patch("/{poll_id}", response_model=PollPublic)
async def update_poll(poll_id: str, payload: PollUpdate, authz: Authorizer = Depends(get_authorizer)):
    poll = await load_poll(poll_id, authz)
    authz.require("polls", "update", poll)
    row = await polls_db.update_poll(poll_id, payload.model_dump(exclude_unset=True))
    return poll_out(row, authz)

@router.delete("/{poll_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_poll(poll_id: str, authz: Authorizer = Depends(get_authorizer)):
    poll = await load_poll(poll_id, authz)
    authz.require("polls", "delete", poll)
    await polls_db.delete_poll(poll_id)
    logger.info("Poll %s deleted by %s", poll_id, authz.actor.id)

@router.post("/{poll_id}/vote", response_model=PollPublic)
async def vote(poll_id: str, payload: VoteRequest, authz: Authorizer = Depends(get_authorizer)):
    poll = await load_poll(poll_id, authz)
    authz.require("polls", "vote")

    if poll["end_date"] and datetime.now(tz=timezone.utc) > poll["end_date"]:
        raise HTTPException(status_code=400, detail="Poll has ended")
    if payload.option_id not in {str(o["id"]) for o in poll["options"]}:
        raise HTTPException(status_code=400, detail="Invalid option")

    existing = await polls_db.user_votes(poll_id, authz.actor.id)
    if poll["allow_multiple"]:
        if any(str(v["option_id"]) == payload.option_id for v in existing):
            raise HTTPException(status_code=400, detail="You have already voted for this option")
        await polls_db.add_vote(poll_id, payload.option_id, authz.actor.id)
    elif existing:
        await polls_db.change_vote(existing[0]["id"], payload.option_id)
    else:
        await polls_db.add_vote(poll_id, payload.option_id, authz.actor.id)

    return poll_out(await polls_db.get_poll(poll_id), authz)
