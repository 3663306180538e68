import logging
import secrets
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.config import settings
from ..core.permissions import Actor, Authorizer
from ..core.roles import InviteStatus
from ..core.security import get_authorizer, get_current_user
from ..db import events as events_db
from ..db import invites as invites_db
from ..db import users as users_db
from ..schemas.invites import InviteCreate, InvitationPublic
from .events import load_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invites"])

_CLOSED = {
    InviteStatus.ACCEPTED.value: "This invitation has already been accepted",
    InviteStatus.DECLINED.value: "This invitation has been declined",
    InviteStatus.REVOKED.value: "This invitation has been revoked",
    InviteStatus.EXPIRED.value: "This invitation has expired",
}

def invite_out(row: dict, show_token: bool = False) -> InvitationPublic:
    data = dict(row)
    if not show_token:
        data.pop("token", None)
    return InvitationPublic(**data)

async def _load_managed_event(event_id: str, authz: Authorizer) -> dict:
    event = await load_event(event_id, authz)
    authz.require("events", "update", event)
    return event

async def _load_for_recipient(token: str, actor: Actor) -> dict:
    """Fetch a pending, unexpired invitation addressed to ``actor``."""

    invite = await invites_db.get_invitation_by_token(token)
    if not invite:
        raise HTTPException(status_code=404, detail="Invalid or expired invitation token")
    if invite["email"].lower() != actor.email.lower():
        raise HTTPException(status_code=403, detail="This invitation was sent to a different email address")
    if invite["status"] in _CLOSED:
        raise HTTPException(status_code=400, detail=_CLOSED[invite["status"]])
    if invite["expires_at"] <= datetime.now(tz=timezone.utc):
        await invites_db.set_status(invite["id"], InviteStatus.EXPIRED)
        raise HTTPException(status_code=400, detail=_CLOSED[InviteStatus.EXPIRED.value])
    return invite


# ==============================
# ORGANIZER SIDE
# ==============================
@router.post("/events/{event_id}/invites", response_model=InvitationPublic, status_code=status.HTTP_201_CREATED)
async def create_invite(event_id: str, payload: InviteCreate, authz: Authorizer = Depends(get_authorizer)):
    await _load_managed_event(event_id, authz)
    email = payload.email.lower()

    if await invites_db.find_pending(event_id, email):
        raise HTTPException(status_code=400, detail="An invitation is already pending for this email")
    user = await users_db.get_user_by_email(email)
    if user and await events_db.is_attendee(event_id, user["id"]):
        raise HTTPException(status_code=400, detail="This user is already attending the event")

    row = await invites_db.create_invitation(
        event_id,
        email,
        authz.actor.id,
        secrets.token_hex(32),
        datetime.now(tz=timezone.utc) + settings.invite_expires,
    )
    logger.info("Invitation %s to event %s created by %s", row["id"], event_id, authz.actor.id)
    return invite_out(row, show_token=True)

@router.get("/events/{event_id}/invites", response_model=List[InvitationPublic])
async def list_invites(event_id: str, authz: Authorizer = Depends(get_authorizer)):
    await _load_managed_event(event_id, authz)
    return [invite_out(r, show_token=True) for r in await invites_db.list_invitations(event_id)]

@router.delete("/events/{event_id}/invites/{invite_id}", response_model=InvitationPublic)
async def revoke_invite(event_id: str, invite_id: str, authz: Authorizer = Depends(get_authorizer)):
    await _load_managed_event(event_id, authz)
    invite = await invites_db.get_invitation(invite_id)
    if not invite or invite["event_id"] != event_id:
        raise HTTPException(status_code=404, detail="Invitation not found")
    if not await invites_db.set_status(invite_id, InviteStatus.REVOKED):
        raise HTTPException(status_code=400, detail="Can only revoke pending invitations")
    logger.info("Invitation %s revoked by %s", invite_id, authz.actor.id)
    return invite_out(await invites_db.get_invitation(invite_id), show_token=True)


# ==============================
# INVITEE SIDE
# ==============================
@router.get("/invites/{token}", response_model=InvitationPublic)
async def get_invite(token: str, actor: Actor = Depends(get_current_user)):
    return invite_out(await _load_for_recipient(token, actor))

@router.post("/invites/{token}/accept", response_model=InvitationPublic)
async def accept_invite(token: str, actor: Actor = Depends(get_current_user)):
    invite = await _load_for_recipient(token, actor)

    outcome = await invites_db.accept_invitation(invite["id"], actor.id)
    if outcome == invites_db.NOT_PENDING:
        raise HTTPException(status_code=400, detail="This invitation has already been processed")
    if outcome == events_db.EVENT_FULL:
        raise HTTPException(status_code=400, detail="This event has reached its maximum capacity")

    logger.info("Invitation %s accepted by %s", invite["id"], actor.id)
    return invite_out(await invites_db.get_invitation(invite["id"]))

@router.post("/invites/{token}/decline", response_model=InvitationPublic)
async def decline_invite(token: str, actor: Actor = Depends(get_current_user)):
    invite = await _load_for_recipient(token, actor)
    if not await invites_db.set_status(invite["id"], InviteStatus.DECLINED):
        raise HTTPException(status_code=400, detail="This invitation has already been processed")
    logger.info("Invitation %s declined by %s", invite["id"], actor.id)
    return invite_out(await invites_db.get_invitation(invite["id"]))
