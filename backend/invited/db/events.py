import textwrap
from typing import Any, Dict, List, Optional, Tuple

from psycopg import AsyncCursor

from .pool import fetch_one, fetch_all, execute, transaction

# join_event outcomes
JOINED = "joined"
ALREADY_ATTENDING = "attending"
EVENT_FULL = "full"

_EVENT_SELECT = textwrap.dedent("""
    select
        e.id, e.title, e.description, e.start_date, e.end_date, e.location,
        e.is_public, e.max_attendees, e.status, e.created_at, e.updated_at,
        e.organizer_id,
        e.organizer_id as created_by_id,
        u.name as organizer_name,
        (select count(1) from event_attendees a where a.event_id = e.id) as attendee_count
    from events e
    join users u on u.id = e.organizer_id
""")

# Columns callers may write through create/update
EDITABLE_COLUMNS = (
    "title", "description", "start_date", "end_date", "location",
    "is_public", "max_attendees", "status",
)

async def get_event(event_id: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(_EVENT_SELECT + " where e.id = %s", (event_id,))

async def is_attendee(event_id: str, user_id: str) -> bool:
    row = await fetch_one(
        "select 1 as ok from event_attendees where event_id = %s and user_id = %s",
        (event_id, user_id),
    )
    return row is not None

async def list_events(
    *,
    user_id: Optional[str],
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    List events. ``user_id=None`` means no visibility restriction (admins);
    otherwise public events plus the ones the user organizes or attends.
    """

    clauses: List[str] = []
    params: List[Any] = []

    if user_id is not None:
        clauses.append(
            "(e.is_public or e.organizer_id = %s or exists ("
            "select 1 from event_attendees a where a.event_id = e.id and a.user_id = %s))"
        )
        params.extend([user_id, user_id])
    if status:
        clauses.append("e.status = %s")
        params.append(status)
    if search:
        clauses.append("(e.title ilike %s or e.description ilike %s)")
        params.extend([f"%{search}%", f"%{search}%"])

    where = (" where " + " and ".join(clauses)) if clauses else ""

    total = await fetch_one("select count(1) as c from events e" + where, params)
    rows = await fetch_all(
        _EVENT_SELECT + where + " order by e.start_date asc limit %s offset %s",
        params + [limit, offset],
    )
    return rows, total["c"]

async def create_event(organizer_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    columns = [c for c in EDITABLE_COLUMNS if fields.get(c) is not None]
    placeholders = ", ".join(["%s"] * (len(columns) + 1))
    row = await fetch_one(
        f"insert into events ({', '.join(columns + ['organizer_id'])}) values ({placeholders}) returning id",
        [fields[c] for c in columns] + [organizer_id],
    )
    return await get_event(row["id"])

async def update_event(event_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    set_clauses = []
    params: List[Any] = []
    for column in EDITABLE_COLUMNS:
        if column in fields:
            set_clauses.append(f"{column} = %s")
            params.append(fields[column])
    if set_clauses:
        set_clauses.append("updated_at = now()")
        params.append(event_id)
        await execute(f"update events set {', '.join(set_clauses)} where id = %s", params)
    return await get_event(event_id)

async def delete_event(event_id: str) -> int:
    return await execute("delete from events where id = %s", (event_id,))

async def join_in_transaction(cur: AsyncCursor, event_id: str, user_id: str) -> str:
    """
    Add an attendee unless the event is at capacity. Must run inside
    ``transaction()``: the event row stays locked until commit, so concurrent
    joins are counted one after another.
    """

    await cur.execute("select max_attendees from events where id = %s for update", (event_id,))
    event = await cur.fetchone()
    if event is None:
        raise LookupError(f"Event {event_id} not found")

    await cur.execute(
        "select 1 as ok from event_attendees where event_id = %s and user_id = %s",
        (event_id, user_id),
    )
    if await cur.fetchone():
        return ALREADY_ATTENDING

    if event["max_attendees"] is not None:
        await cur.execute("select count(1) as c from event_attendees where event_id = %s", (event_id,))
        if (await cur.fetchone())["c"] >= event["max_attendees"]:
            return EVENT_FULL

    await cur.execute(
        "insert into event_attendees (event_id, user_id) values (%s, %s)",
        (event_id, user_id),
    )
    return JOINED

async def join_event(event_id: str, user_id: str) -> str:
    async with transaction() as cur:
        return await join_in_transaction(cur, event_id, user_id)

async def remove_attendee(event_id: str, user_id: str) -> int:
    return await execute(
        "delete from event_attendees where event_id = %s and user_id = %s",
        (event_id, user_id),
    )
