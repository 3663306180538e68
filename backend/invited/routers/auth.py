import logging

from fastapi import APIRouter, HTTPException, Depends, status

from ..schemas.auth import SignUpRequest, LoginRequest, TokenResponse, UserPublic, PermissionsResponse
from ..core.permissions import Actor, Authorizer
from ..core.roles import Role
from ..core.security import (
    hash_password,
    verify_password,
    create_access_token,
    get_authorizer,
    get_current_user,
)
from ..db import users as users_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# ==============================
# SIGNUP
# ==============================
@router.post("/signup", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignUpRequest):
    if len(payload.password.encode("utf-8")) > 72:
        raise HTTPException(status_code=400, detail="Password cannot exceed 72 bytes")

    existing_user = await users_db.get_user_by_email(payload.email)
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    # First user becomes admin; nobody else can sign up as one
    is_first_user = await users_db.count_users() == 0
    if is_first_user:
        role = Role.ADMIN
    elif payload.role is Role.ADMIN:
        raise HTTPException(status_code=400, detail="ADMIN role cannot be self-assigned")
    else:
        role = payload.role or Role.GUEST

    created_user = await users_db.create_user(
        payload.email, payload.name, hash_password(payload.password), role.value
    )
    logger.info("New user %s signed up as %s", created_user["id"], role.value)
    return UserPublic(**created_user)


# ==============================
# LOGIN
# ==============================
@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest):
    if len(payload.password.encode("utf-8")) > 72:
        raise HTTPException(status_code=400, detail="Password cannot exceed 72 bytes")

    user = await users_db.get_user_by_email(payload.email)

    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled"
        )

    token = create_access_token({"sub": str(user["id"]), "role": user["role"]})

    return TokenResponse(access_token=token)


# ==============================
# PROFILE / PERMISSIONS
# ==============================
@router.get("/profile", response_model=UserPublic)
async def profile(current_user: Actor = Depends(get_current_user)):
    user = await users_db.get_user_by_id(current_user.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserPublic(**user)

@router.get("/permissions", response_model=PermissionsResponse)
async def permissions(authz: Authorizer = Depends(get_authorizer)):
    """Role-level capability map the frontend uses to show or hide controls."""
    return PermissionsResponse(role=authz.actor.role, permissions=authz.capabilities())
