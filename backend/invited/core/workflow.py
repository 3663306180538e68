"""
Task status workflow.

    TODO -> IN_PROGRESS -> COMPLETED         (+ CANCELLED)

Who may move a task where depends on the actor's role and on their relation to
the task (creator / assignee). Guests assigned to a task may only move it
forward; cancelling needs the creator or an organizer.
"""

import logging
from typing import Any, List, Mapping

from .permissions import Actor, is_assignee, is_creator
from .roles import Role, TaskStatus, TASK_STATUSES

logger = logging.getLogger(__name__)

# Forward-only order for guest assignees; CANCELLED is not part of it.
FORWARD_ORDER = (TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)


class IllegalTransition(Exception):
    """A status change the actor is not allowed to make."""

    def __init__(self, current: TaskStatus, target: TaskStatus):
        self.current = current
        self.target = target
        super().__init__(f"You cannot move this task to {target.label}")


def task_status(task: Any) -> TaskStatus:
    value = task.get("status") if isinstance(task, Mapping) else getattr(task, "status", None)
    return TaskStatus(value)

def _unhandled(actor: Actor):
    return ValueError(f"Unhandled role: {actor.role!r}")


def can_move_task_to_status(task: Any, new_status: TaskStatus, actor: Actor) -> bool:
    new_status = TaskStatus(new_status)
    creator = is_creator(actor, task)
    assignee = is_assignee(actor, task)

    if actor.role is Role.ADMIN:
        return True

    if new_status is TaskStatus.CANCELLED:
        return creator or actor.role is Role.ORGANIZER

    if actor.role is Role.GUEST:
        if not assignee:
            return False
        current = task_status(task)
        if current not in FORWARD_ORDER:
            return False
        return FORWARD_ORDER.index(new_status) > FORWARD_ORDER.index(current)

    if actor.role is Role.ORGANIZER:
        return assignee or creator

    raise _unhandled(actor)

def allowed_transitions(task: Any, actor: Actor) -> List[TaskStatus]:
    """Legal target statuses other than the current one, in board order."""

    current = task_status(task)
    return [
        s for s in TASK_STATUSES
        if s is not current and can_move_task_to_status(task, s, actor)
    ]

def ensure_transition(task: Any, new_status: TaskStatus, actor: Actor) -> None:
    new_status = TaskStatus(new_status)
    if not can_move_task_to_status(task, new_status, actor):
        current = task_status(task)
        logger.info(
            "Rejected task move %s -> %s by user %s (%s)",
            current.value, new_status.value, actor.id, actor.role.value,
        )
        raise IllegalTransition(current, new_status)


def can_update_task(task: Any, actor: Actor) -> bool:
    """Coarse gate: may the actor change this task's status at all (draggable)."""

    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.ORGANIZER:
        return is_assignee(actor, task) or is_creator(actor, task)
    if actor.role is Role.GUEST:
        return is_assignee(actor, task)
    raise _unhandled(actor)

def can_edit_task_details(task: Any, actor: Actor) -> bool:
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.ORGANIZER:
        return is_creator(actor, task)
    if actor.role is Role.GUEST:
        return False
    raise _unhandled(actor)

def can_edit_completion_details(task: Any, actor: Actor) -> bool:
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.ORGANIZER:
        return is_creator(actor, task)
    if actor.role is Role.GUEST:
        return is_assignee(actor, task) and task_status(task) is TaskStatus.COMPLETED
    raise _unhandled(actor)

def can_complete_task(task: Any, actor: Actor) -> bool:
    if task_status(task) is TaskStatus.COMPLETED:
        return False
    return is_assignee(actor, task) or is_creator(actor, task) or actor.role is Role.ADMIN
