from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.roles import Priority, TaskStatus
from .common import Pagination, reject_nulls

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None
    event_id: str
    images: List[str] = Field(default_factory=list)

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None
    images: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def _required_columns(cls, data):
        # description, due_date and assignee_id may be cleared
        return reject_nulls(data, ("title", "status", "priority", "images"))

class TaskComplete(BaseModel):
    completion_note: Optional[str] = Field(default=None, max_length=1000)
    completion_images: List[str] = Field(default_factory=list)

class CompletionUpdate(BaseModel):
    completion_note: Optional[str] = Field(default=None, max_length=1000)
    completion_images: Optional[List[str]] = None

class UserRef(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None

class EventRef(BaseModel):
    id: str
    title: Optional[str] = None

class TaskPublic(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: Priority
    due_date: Optional[datetime] = None
    images: List[str] = Field(default_factory=list)
    event: EventRef
    assignee: Optional[UserRef] = None
    created_by: UserRef
    completed_by: Optional[UserRef] = None
    completed_at: Optional[datetime] = None
    completion_note: Optional[str] = None
    completion_images: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Advisory flags for the current user; the API enforces the same rules.
    allowed_transitions: List[TaskStatus] = Field(default_factory=list)
    can_update: bool = False
    can_edit_details: bool = False
    can_edit_completion: bool = False
    can_complete: bool = False
    can_delete: bool = False

class TaskList(BaseModel):
    tasks: List[TaskPublic]
    pagination: Pagination

class TaskStats(BaseModel):
    event_id: str
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    overdue: int
    invalidated_at: Optional[datetime] = None
