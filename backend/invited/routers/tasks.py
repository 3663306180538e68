import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.invalidation import StatsInvalidationBus
from ..core.permissions import Authorizer, is_assignee, is_creator
from ..core.roles import Priority, Role, TaskStatus
from ..core.security import get_authorizer, get_stats_bus
from ..core import workflow
from ..db import events as events_db
from ..db import tasks as tasks_db
from ..schemas.common import paginate
from ..schemas.tasks import (
    TaskCreate,
    TaskUpdate,
    TaskComplete,
    CompletionUpdate,
    TaskPublic,
    TaskList,
    TaskStats,
    UserRef,
    EventRef,
)
from .events import load_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])

def _ref(row: dict, prefix: str) -> Optional[UserRef]:
    if not row.get(f"{prefix}_id"):
        return None
    return UserRef(id=row[f"{prefix}_id"], name=row.get(f"{prefix}_name"), email=row.get(f"{prefix}_email"))

def task_out(row: dict, authz: Authorizer) -> TaskPublic:
    actor = authz.actor
    return TaskPublic(
        id=row["id"],
        title=row["title"],
        description=row.get("description"),
        status=row["status"],
        priority=row["priority"],
        due_date=row.get("due_date"),
        images=row.get("images") or [],
        event=EventRef(id=row["event_id"], title=row.get("event_title")),
        assignee=_ref(row, "assignee"),
        created_by=_ref(row, "created_by"),
        completed_by=_ref(row, "completed_by"),
        completed_at=row.get("completed_at"),
        completion_note=row.get("completion_note"),
        completion_images=row.get("completion_images") or [],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        allowed_transitions=workflow.allowed_transitions(row, actor),
        can_update=workflow.can_update_task(row, actor),
        can_edit_details=workflow.can_edit_task_details(row, actor),
        can_edit_completion=workflow.can_edit_completion_details(row, actor),
        can_complete=workflow.can_complete_task(row, actor),
        can_delete=authz.can_delete_task(row),
    )

async def _can_see_task(task: dict, authz: Authorizer) -> bool:
    actor = authz.actor
    if actor.role is Role.ADMIN or is_creator(actor, task) or is_assignee(actor, task):
        return True
    if actor.role is Role.GUEST:
        return False
    if str(task.get("event_organizer_id")) == actor.id:
        return True
    return await events_db.is_attendee(task["event_id"], actor.id)

async def load_task(task_id: str, authz: Authorizer) -> dict:
    authz.require("tasks", "read")
    task = await tasks_db.get_task(task_id)
    if not task or not await _can_see_task(task, authz):
        raise HTTPException(status_code=404, detail="Task not found")
    return task

async def _check_assignee(event_id: str, assignee_id: Optional[str]) -> None:
    if assignee_id and not await tasks_db.is_event_member(event_id, assignee_id):
        raise HTTPException(status_code=400, detail="Assignee must be the event organizer or an attendee")


@router.get("", response_model=TaskList)
async def list_tasks(
    status_filter: Optional[TaskStatus] = Query(default=None, alias="status"),
    priority: Optional[Priority] = None,
    event_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    authz: Authorizer = Depends(get_authorizer),
):
    authz.require("tasks", "read")
    actor = authz.actor

    if actor.role is Role.ADMIN:
        visible_to = None
    elif actor.role is Role.ORGANIZER:
        visible_to = (actor.id, "events")
    elif actor.role is Role.GUEST:
        visible_to = (actor.id, "assigned")
    else:
        raise ValueError(f"Unhandled role: {actor.role!r}")

    rows, total = await tasks_db.list_tasks(
        visible_to=visible_to,
        status=status_filter.value if status_filter else None,
        priority=priority.value if priority else None,
        event_id=event_id,
        assignee_id=assignee_id,
        search=search,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return TaskList(tasks=[task_out(r, authz) for r in rows], pagination=paginate(page, limit, total))

@router.get("/stats/{event_id}", response_model=TaskStats)
async def task_stats(
    event_id: str,
    authz: Authorizer = Depends(get_authorizer),
    bus: StatsInvalidationBus = Depends(get_stats_bus),
):
    await load_event(event_id, authz)
    stats = await tasks_db.task_stats(event_id)
    return TaskStats(event_id=event_id, invalidated_at=bus.last_invalidated(event_id), **stats)

@router.post("", response_model=TaskPublic, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreate, authz: Authorizer = Depends(get_authorizer)):
    authz.require("tasks", "create")
    actor = authz.actor

    event = await events_db.get_event(payload.event_id)
    if not event:
        raise HTTPException(status_code=400, detail="Event not found")
    if not (
        authz.has_permission("events", "manage_all")
        or is_creator(actor, event)
        or await events_db.is_attendee(payload.event_id, actor.id)
    ):
        raise HTTPException(status_code=403, detail="You do not have access to this event")

    if payload.status is TaskStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Tasks are completed through the complete action")
    await _check_assignee(payload.event_id, payload.assignee_id)

    fields = payload.model_dump()
    fields["status"] = payload.status.value
    fields["priority"] = payload.priority.value
    row = await tasks_db.create_task(actor.id, fields)
    logger.info("Task %s created in event %s by %s", row["id"], payload.event_id, actor.id)
    return task_out(row, authz)

@router.get("/{task_id}", response_model=TaskPublic)
async def get_task(task_id: str, authz: Authorizer = Depends(get_authorizer)):
    return task_out(await load_task(task_id, authz), authz)

@router.patch("/{task_id}", response_model=TaskPublic)
async def update_task(
    task_id: str,
    payload: TaskUpdate,
    authz: Authorizer = Depends(get_authorizer),
    bus: StatsInvalidationBus = Depends(get_stats_bus),
):
    task = await load_task(task_id, authz)
    actor = authz.actor

    fields = payload.model_dump(exclude_unset=True)
    new_status = fields.pop("status", None)

    if fields:
        if not workflow.can_edit_task_details(task, actor):
            detail = (
                "Guests can only update task status"
                if actor.role is Role.GUEST
                else "You can only edit tasks you created"
            )
            raise HTTPException(status_code=403, detail=detail)
        if "priority" in fields and fields["priority"] is not None:
            fields["priority"] = Priority(fields["priority"]).value
        if "assignee_id" in fields:
            await _check_assignee(task["event_id"], fields["assignee_id"])

    status_changed = new_status is not None and TaskStatus(new_status).value != task["status"]
    if status_changed:
        if not workflow.can_update_task(task, actor):
            raise HTTPException(status_code=403, detail="You cannot update the status of this task")
        workflow.ensure_transition(task, new_status, actor)
        fields["status"] = TaskStatus(new_status).value
        if new_status is TaskStatus.COMPLETED:
            fields["completed_by_id"] = actor.id
            fields["completed_at"] = datetime.now(tz=timezone.utc)
        elif task["status"] == TaskStatus.COMPLETED.value:
            # Reopened: the earlier completion no longer describes the task
            fields.update(completed_by_id=None, completed_at=None, completion_note=None, completion_images=[])

    if not fields:
        return task_out(task, authz)

    row = await tasks_db.update_task(task_id, fields)
    if status_changed:
        logger.info("Task %s moved %s -> %s by %s", task_id, task["status"], fields["status"], actor.id)
        bus.publish(task["event_id"])
    return task_out(row, authz)

@router.post("/{task_id}/complete", response_model=TaskPublic)
async def complete_task(
    task_id: str,
    payload: TaskComplete,
    authz: Authorizer = Depends(get_authorizer),
    bus: StatsInvalidationBus = Depends(get_stats_bus),
):
    task = await load_task(task_id, authz)
    actor = authz.actor

    if task["status"] == TaskStatus.COMPLETED.value:
        raise HTTPException(status_code=400, detail="Task is already completed")
    if not workflow.can_complete_task(task, actor):
        raise HTTPException(status_code=403, detail="You do not have permission to complete this task")
    workflow.ensure_transition(task, TaskStatus.COMPLETED, actor)

    row = await tasks_db.complete_task(
        task_id,
        completed_by_id=actor.id,
        completion_note=payload.completion_note,
        completion_images=payload.completion_images,
        completed_at=datetime.now(tz=timezone.utc),
    )
    logger.info("Task %s completed by %s", task_id, actor.id)
    bus.publish(task["event_id"])
    return task_out(row, authz)

@router.patch("/{task_id}/completion", response_model=TaskPublic)
async def update_completion(
    task_id: str,
    payload: CompletionUpdate,
    authz: Authorizer = Depends(get_authorizer),
):
    task = await load_task(task_id, authz)

    if not workflow.can_edit_completion_details(task, authz.actor):
        raise HTTPException(status_code=403, detail="You cannot edit the completion details of this task")
    if task["status"] != TaskStatus.COMPLETED.value:
        raise HTTPException(status_code=400, detail="Task is not completed")

    row = await tasks_db.update_completion(task_id, payload.model_dump(exclude_unset=True))
    return task_out(row, authz)

@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    authz: Authorizer = Depends(get_authorizer),
    bus: StatsInvalidationBus = Depends(get_stats_bus),
):
    task = await load_task(task_id, authz)
    authz.require("tasks", "delete", task)
    await tasks_db.delete_task(task_id)
    logger.info("Task %s deleted by %s", task_id, authz.actor.id)
    bus.publish(task["event_id"])
