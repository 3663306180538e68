import textwrap
from typing import Any, Dict, List, Optional, Tuple

from .pool import fetch_one, fetch_all, execute

_POLL_SELECT = textwrap.dedent("""
    select
        p.id, p.title, p.description, p.created_by_id, u.name as created_by_name,
        p.event_id, e.organizer_id as event_organizer_id,
        p.allow_multiple, p.end_date, p.created_at, p.updated_at
    from polls p
    join users u on u.id = p.created_by_id
    left join events e on e.id = p.event_id
""")

# Polls a user may see: their own, global ones, or ones on events they organize/attend
_VISIBLE = textwrap.dedent("""
    (p.created_by_id = %s or p.event_id is null or e.organizer_id = %s or exists (
        select 1 from event_attendees a where a.event_id = p.event_id and a.user_id = %s))
""")

async def _with_options(poll: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if poll is None:
        return None
    options = await fetch_all(
        textwrap.dedent("""
            select o.id, o.text, o.position, count(v.id) as votes
            from poll_options o
            left join poll_votes v on v.option_id = o.id
            where o.poll_id = %s
            group by o.id, o.text, o.position
            order by o.position asc
        """),
        (poll["id"],),
    )
    return {**poll, "options": options}

async def get_poll(poll_id: str, *, visible_to: Optional[str] = None) -> Optional[Dict[str, Any]]:
    query = _POLL_SELECT + " where p.id = %s"
    params: List[Any] = [poll_id]
    if visible_to is not None:
        query += " and " + _VISIBLE
        params.extend([visible_to] * 3)
    return await _with_options(await fetch_one(query, params))

async def list_polls(
    *,
    visible_to: Optional[str],
    event_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    clauses: List[str] = []
    params: List[Any] = []
    if visible_to is not None:
        clauses.append(_VISIBLE)
        params.extend([visible_to] * 3)
    if event_id:
        clauses.append("p.event_id = %s")
        params.append(event_id)
    where = (" where " + " and ".join(clauses)) if clauses else ""

    total = await fetch_one(
        "select count(1) as c from polls p left join events e on e.id = p.event_id" + where,
        params,
    )
    rows = await fetch_all(
        _POLL_SELECT + where + " order by p.created_at desc limit %s offset %s",
        params + [limit, offset],
    )
    return [await _with_options(row) for row in rows], total["c"]

async def create_poll(created_by_id: str, fields: Dict[str, Any], options: List[str]) -> Dict[str, Any]:
    row = await fetch_one(
        textwrap.dedent("""
            insert into polls (title, description, created_by_id, event_id, allow_multiple, end_date)
            values (%s, %s, %s, %s, %s, %s)
            returning id
        """),
        (
            fields["title"],
            fields.get("description"),
            created_by_id,
            fields.get("event_id"),
            fields.get("allow_multiple", False),
            fields.get("end_date"),
        ),
    )
    for position, text in enumerate(options):
        await execute(
            "insert into poll_options (poll_id, text, position) values (%s, %s, %s)",
            (row["id"], text, position),
        )
    return await get_poll(row["id"])

async def update_poll(poll_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    set_clauses = []
    params: List[Any] = []
    for column in ("title", "description", "allow_multiple", "end_date"):
        if column in fields:
            set_clauses.append(f"{column} = %s")
            params.append(fields[column])
    if set_clauses:
        set_clauses.append("updated_at = now()")
        params.append(poll_id)
        await execute(f"update polls set {', '.join(set_clauses)} where id = %s", params)
    return await get_poll(poll_id)

async def delete_poll(poll_id: str) -> int:
    return await execute("delete from polls where id = %s", (poll_id,))

async def user_votes(poll_id: str, user_id: str) -> List[Dict[str, Any]]:
    return await fetch_all(
        "select id, option_id from poll_votes where poll_id = %s and user_id = %s",
        (poll_id, user_id),
    )

async def add_vote(poll_id: str, option_id: str, user_id: str) -> int:
    return await execute(
        "insert into poll_votes (poll_id, option_id, user_id) values (%s, %s, %s)",
        (poll_id, option_id, user_id),
    )

async def change_vote(vote_id: str, option_id: str) -> int:
    return await execute("update poll_votes set option_id = %s where id = %s", (option_id, vote_id))
