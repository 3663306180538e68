import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..core.permissions import Authorizer
from ..core.roles import Role
from ..core.security import get_authorizer
from ..db import users as users_db
from ..schemas.auth import UserPublic, RoleUpdate, StatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

@router.get("/dashboard", response_model=Dict[str, Any])
async def get_dashboard_stats(authz: Authorizer = Depends(get_authorizer)):
    """
    Admin-only dashboard endpoint: platform wide counts.
    """
    authz.require("admin", "view_analytics")
    return await users_db.platform_counts()

@router.get("/users", response_model=List[UserPublic])
async def list_users(role: Optional[Role] = None, authz: Authorizer = Depends(get_authorizer)):
    authz.require("users", "read")
    users = await users_db.list_users(role.value if role else None)
    return [UserPublic(**u) for u in users]

@router.patch("/users/{user_id}/role", response_model=UserPublic)
async def change_role(user_id: str, payload: RoleUpdate, authz: Authorizer = Depends(get_authorizer)):
    authz.require("users", "manage_roles")
    if user_id == authz.actor.id and payload.role is not Role.ADMIN:
        raise HTTPException(status_code=400, detail="Admins cannot demote themselves")

    user = await users_db.set_role(user_id, payload.role.value)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s role set to %s by %s", user_id, payload.role.value, authz.actor.id)
    return UserPublic(**user)

@router.patch("/users/{user_id}/status", response_model=Dict[str, Any])
async def change_status(user_id: str, payload: StatusUpdate, authz: Authorizer = Depends(get_authorizer)):
    authz.require("users", "update")
    if user_id == authz.actor.id and not payload.is_active:
        raise HTTPException(status_code=400, detail="Admins cannot deactivate themselves")

    updated = await users_db.set_active(user_id, payload.is_active)
    if updated == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s is_active=%s by %s", user_id, payload.is_active, authz.actor.id)
    return {"message": "User status updated", "user_id": user_id, "is_active": payload.is_active}
