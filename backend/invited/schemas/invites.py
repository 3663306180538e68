from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr

from ..core.roles import InviteStatus

class InviteCreate(BaseModel):
    email: EmailStr

class InvitationPublic(BaseModel):
    id: str
    event_id: str
    event_title: Optional[str] = None
    email: str
    status: InviteStatus
    invited_by_id: str
    invited_by_name: Optional[str] = None
    expires_at: datetime
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    # Only shown to whoever manages the event
    token: Optional[str] = None
