from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from ..core.roles import Role

class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=1, max_length=120)
    role: Optional[Role] = None  # first user becomes ADMIN automatically

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserPublic(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    is_active: bool = True
    created_at: Optional[datetime] = None

class RoleUpdate(BaseModel):
    role: Role

class StatusUpdate(BaseModel):
    is_active: bool

class PermissionsResponse(BaseModel):
    role: Role
    permissions: Dict[str, Dict[str, str]]
