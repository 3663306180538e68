from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .common import Pagination, reject_nulls

class PollCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    event_id: Optional[str] = None
    allow_multiple: bool = False
    end_date: Optional[datetime] = None
    options: List[str] = Field(min_length=2)

class PollUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    allow_multiple: Optional[bool] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _required_columns(cls, data):
        return reject_nulls(data, ("title", "allow_multiple"))

class VoteRequest(BaseModel):
    option_id: str

class PollOption(BaseModel):
    id: str
    text: str
    position: int = 0
    votes: int = 0

class PollPublic(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    created_by_id: str
    created_by_name: Optional[str] = None
    event_id: Optional[str] = None
    allow_multiple: bool = False
    end_date: Optional[datetime] = None
    options: List[PollOption] = Field(default_factory=list)
    can_manage: bool = False
    can_delete: bool = False
    created_at: Optional[datetime] = None

class PollList(BaseModel):
    polls: List[PollPublic]
    pagination: Pagination
