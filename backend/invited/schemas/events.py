from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .common import Pagination, reject_nulls

class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    start_date: datetime
    end_date: datetime
    location: Optional[str] = None
    is_public: bool = False
    max_attendees: Optional[int] = Field(default=None, ge=1)
    status: str = "DRAFT"

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self

class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    is_public: Optional[bool] = None
    max_attendees: Optional[int] = Field(default=None, ge=1)
    status: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _required_columns(cls, data):
        return reject_nulls(data, ("title", "description", "start_date", "end_date", "is_public", "status"))

class EventPublic(BaseModel):
    id: str
    title: str
    description: str
    start_date: datetime
    end_date: datetime
    location: Optional[str] = None
    is_public: bool
    max_attendees: Optional[int] = None
    status: str
    organizer_id: str
    organizer_name: Optional[str] = None
    attendee_count: int = 0
    can_manage: bool = False
    can_delete: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class EventList(BaseModel):
    events: List[EventPublic]
    pagination: Pagination
