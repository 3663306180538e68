import textwrap
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.roles import InviteStatus
from .events import EVENT_FULL, join_in_transaction
from .pool import fetch_one, fetch_all, execute, transaction

# accept_invitation outcome when the invitation changed underneath the caller
NOT_PENDING = "not_pending"

_INVITE_SELECT = textwrap.dedent("""
    select
        i.id, i.event_id, i.email, i.token, i.status, i.invited_by_id,
        i.expires_at, i.responded_at, i.created_at,
        e.title as event_title,
        u.name as invited_by_name
    from invitations i
    join events e on e.id = i.event_id
    join users u on u.id = i.invited_by_id
""")

async def create_invitation(
    event_id: str, email: str, invited_by_id: str, token: str, expires_at: datetime
) -> Dict[str, Any]:
    row = await fetch_one(
        "insert into invitations (event_id, email, invited_by_id, token, expires_at) "
        "values (%s, %s, %s, %s, %s) returning id",
        (event_id, email, invited_by_id, token, expires_at),
    )
    return await get_invitation(row["id"])

async def get_invitation(invite_id: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(_INVITE_SELECT + " where i.id = %s", (invite_id,))

async def get_invitation_by_token(token: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(_INVITE_SELECT + " where i.token = %s", (token,))

async def list_invitations(event_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(_INVITE_SELECT + " where i.event_id = %s order by i.created_at desc", (event_id,))

async def find_pending(event_id: str, email: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(
        _INVITE_SELECT + " where i.event_id = %s and lower(i.email) = lower(%s) and i.status = %s",
        (event_id, email, InviteStatus.PENDING.value),
    )

async def set_status(invite_id: str, status: InviteStatus) -> int:
    """Move a PENDING invitation to ``status``. Returns 0 if it was no longer pending."""

    return await execute(
        "update invitations set status = %s, responded_at = now() where id = %s and status = %s",
        (status.value, invite_id, InviteStatus.PENDING.value),
    )

async def accept_invitation(invite_id: str, user_id: str) -> str:
    """
    Mark the invitation ACCEPTED and add ``user_id`` to the event in one
    transaction. Returns a ``join_in_transaction`` outcome, or NOT_PENDING.
    A full event leaves the invitation pending.
    """

    async with transaction() as cur:
        await cur.execute(
            "select event_id, status from invitations where id = %s for update", (invite_id,)
        )
        invite = await cur.fetchone()
        if invite is None or invite["status"] != InviteStatus.PENDING.value:
            return NOT_PENDING

        outcome = await join_in_transaction(cur, invite["event_id"], user_id)
        if outcome != EVENT_FULL:
            await cur.execute(
                "update invitations set status = %s, responded_at = now() where id = %s",
                (InviteStatus.ACCEPTED.value, invite_id),
            )
        return outcome
