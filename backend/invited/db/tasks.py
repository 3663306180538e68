import textwrap
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from psycopg.types.json import Jsonb

from .pool import fetch_one, fetch_all, execute

_TASK_SELECT = textwrap.dedent("""
    select
        t.id, t.title, t.description, t.status, t.priority, t.due_date, t.images,
        t.event_id, e.title as event_title, e.organizer_id as event_organizer_id,
        t.assignee_id, a.name as assignee_name, a.email as assignee_email,
        t.created_by_id, c.name as created_by_name, c.email as created_by_email,
        t.completed_by_id, cb.name as completed_by_name,
        t.completed_at, t.completion_note, t.completion_images,
        t.created_at, t.updated_at
    from tasks t
    join events e on e.id = t.event_id
    join users c on c.id = t.created_by_id
    left join users a on a.id = t.assignee_id
    left join users cb on cb.id = t.completed_by_id
""")

# Columns writable through a PATCH
DETAIL_COLUMNS = ("title", "description", "priority", "due_date", "assignee_id", "images")
STATUS_COLUMNS = ("status", "completed_by_id", "completed_at", "completion_note", "completion_images")

def _db_value(column: str, value: Any) -> Any:
    if column in ("images", "completion_images"):
        return Jsonb(value or [])
    return value

async def get_task(task_id: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(_TASK_SELECT + " where t.id = %s", (task_id,))

async def list_tasks(
    *,
    visible_to: Optional[Tuple[str, str]] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    event_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    List tasks with filters.

    ``visible_to`` is ``(user_id, scope)`` where scope is "events" (tasks of
    events the user organizes or attends) or "assigned" (tasks assigned to the
    user). ``None`` means unrestricted.
    """

    clauses: List[str] = []
    params: List[Any] = []

    if visible_to is not None:
        user_id, scope = visible_to
        if scope == "events":
            clauses.append(
                "(e.organizer_id = %s or t.created_by_id = %s or t.assignee_id = %s or exists ("
                "select 1 from event_attendees ea where ea.event_id = t.event_id and ea.user_id = %s))"
            )
            params.extend([user_id, user_id, user_id, user_id])
        elif scope == "assigned":
            clauses.append("t.assignee_id = %s")
            params.append(user_id)
        else:
            raise ValueError(f"Unknown visibility scope: {scope}")

    for column, value in (
        ("t.status", status),
        ("t.priority", priority),
        ("t.event_id", event_id),
        ("t.assignee_id", assignee_id),
    ):
        if value:
            clauses.append(f"{column} = %s")
            params.append(value)
    if search:
        clauses.append("(t.title ilike %s or t.description ilike %s)")
        params.extend([f"%{search}%", f"%{search}%"])

    where = (" where " + " and ".join(clauses)) if clauses else ""

    total = await fetch_one(
        "select count(1) as c from tasks t join events e on e.id = t.event_id" + where,
        params,
    )
    rows = await fetch_all(
        _TASK_SELECT + where + " order by t.due_date asc nulls last, t.created_at desc limit %s offset %s",
        params + [limit, offset],
    )
    return rows, total["c"]

async def create_task(created_by_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    columns = [c for c in DETAIL_COLUMNS + ("status", "event_id") if fields.get(c) is not None]
    values = [_db_value(c, fields[c]) for c in columns]
    placeholders = ", ".join(["%s"] * (len(columns) + 1))
    row = await fetch_one(
        f"insert into tasks ({', '.join(columns + ['created_by_id'])}) values ({placeholders}) returning id",
        values + [created_by_id],
    )
    return await get_task(row["id"])

async def update_task(task_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    set_clauses = []
    params: List[Any] = []
    for column in DETAIL_COLUMNS + STATUS_COLUMNS:
        if column in fields:
            set_clauses.append(f"{column} = %s")
            params.append(_db_value(column, fields[column]))
    if set_clauses:
        set_clauses.append("updated_at = now()")
        params.append(task_id)
        await execute(f"update tasks set {', '.join(set_clauses)} where id = %s", params)
    return await get_task(task_id)

async def complete_task(
    task_id: str,
    completed_by_id: str,
    completion_note: Optional[str],
    completion_images: List[str],
    completed_at: datetime,
) -> Optional[Dict[str, Any]]:
    await execute(
        textwrap.dedent("""
            update tasks
            set status = 'COMPLETED', completed_by_id = %s, completed_at = %s,
                completion_note = %s, completion_images = %s, updated_at = now()
            where id = %s
        """),
        (completed_by_id, completed_at, completion_note, Jsonb(completion_images or []), task_id),
    )
    return await get_task(task_id)

async def update_completion(task_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    set_clauses = []
    params: List[Any] = []
    for column in ("completion_note", "completion_images"):
        if column in fields:
            set_clauses.append(f"{column} = %s")
            params.append(_db_value(column, fields[column]))
    if set_clauses:
        set_clauses.append("updated_at = now()")
        params.append(task_id)
        await execute(f"update tasks set {', '.join(set_clauses)} where id = %s", params)
    return await get_task(task_id)

async def delete_task(task_id: str) -> int:
    return await execute("delete from tasks where id = %s", (task_id,))

async def task_stats(event_id: str) -> Dict[str, Any]:
    by_status = await fetch_all(
        "select status, count(1) as count from tasks where event_id = %s group by status",
        (event_id,),
    )
    by_priority = await fetch_all(
        "select priority, count(1) as count from tasks where event_id = %s group by priority",
        (event_id,),
    )
    overdue = await fetch_one(
        textwrap.dedent("""
            select count(1) as c from tasks
            where event_id = %s and due_date < now() and status not in ('COMPLETED', 'CANCELLED')
        """),
        (event_id,),
    )
    return {
        "total": sum(row["count"] for row in by_status),
        "by_status": {row["status"]: row["count"] for row in by_status},
        "by_priority": {row["priority"]: row["count"] for row in by_priority},
        "overdue": overdue["c"],
    }

async def is_event_member(event_id: str, user_id: str) -> bool:
    """True if the user organizes or attends the event (valid assignee)."""

    row = await fetch_one(
        textwrap.dedent("""
            select 1 as ok from events e
            where e.id = %s and (e.organizer_id = %s or exists (
                select 1 from event_attendees a where a.event_id = e.id and a.user_id = %s))
        """),
        (event_id, user_id, user_id),
    )
    return row is not None
