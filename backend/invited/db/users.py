import textwrap
from typing import Any, Dict, List, Optional

from .pool import fetch_one, fetch_all, execute

_PUBLIC_COLUMNS = "id, email, name, role, is_active, created_at"

async def get_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(
        f"select {_PUBLIC_COLUMNS} from users where id = %s",
        (user_id,),
    )

async def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(
        f"select {_PUBLIC_COLUMNS}, password_hash from users where lower(email) = lower(%s)",
        (email,),
    )

async def count_users() -> int:
    row = await fetch_one("select count(1) as c from users", None)
    return row["c"]

async def create_user(email: str, name: str, password_hash: str, role: str) -> Dict[str, Any]:
    return await fetch_one(
        textwrap.dedent(f"""
            insert into users (email, name, password_hash, role)
            values (%s, %s, %s, %s)
            returning {_PUBLIC_COLUMNS}
        """),
        (email.lower(), name, password_hash, role),
    )

async def list_users(role: Optional[str] = None) -> List[Dict[str, Any]]:
    if role:
        return await fetch_all(
            f"select {_PUBLIC_COLUMNS} from users where role = %s order by created_at desc",
            (role,),
        )
    return await fetch_all(f"select {_PUBLIC_COLUMNS} from users order by created_at desc", None)

async def set_role(user_id: str, role: str) -> Optional[Dict[str, Any]]:
    return await fetch_one(
        textwrap.dedent(f"""
            update users set role = %s, updated_at = now()
            where id = %s
            returning {_PUBLIC_COLUMNS}
        """),
        (role, user_id),
    )

async def set_active(user_id: str, is_active: bool) -> int:
    return await execute(
        "update users set is_active = %s, updated_at = now() where id = %s",
        (is_active, user_id),
    )

async def platform_counts() -> Dict[str, Any]:
    """Aggregate counts for the admin dashboard."""

    users_by_role = await fetch_all("select role, count(1) as count from users group by role", None)
    totals = await fetch_one(
        textwrap.dedent("""
            select
                (select count(1) from users) as users,
                (select count(1) from users where is_active) as active_users,
                (select count(1) from events) as events,
                (select count(1) from tasks) as tasks,
                (select count(1) from tasks where status = 'COMPLETED') as completed_tasks,
                (select count(1) from polls) as polls,
                (select count(1) from users where created_at >= now() - interval '7 days') as recent_signups_7d
        """),
        None,
    )
    return {**totals, "users_by_role": {row["role"]: row["count"] for row in users_by_role}}
