from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

import jwt
from fastapi import HTTPException, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from ..core.config import settings
from ..core.invalidation import StatsInvalidationBus
from ..core.permissions import Actor, Authorizer, PermissionPolicy, build_policy
from ..core.roles import Role, parse_role
from ..db import users as users_db

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

def hash_password(password: str) -> str:
    return pwd_context.hash(password[:72])  # bcrypt only looks at 72 bytes

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password[:72], hashed_password)

def create_access_token(subject: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = subject.copy()
    now = datetime.now(tz=timezone.utc)
    expire = now + (expires_delta or settings.access_token_expires)
    to_encode.update({"exp": expire, "iat": now})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt

def actor_from_row(row: Dict[str, Any]) -> Actor:
    return Actor(
        id=str(row["id"]),
        role=parse_role(row["role"]),
        name=row.get("name") or "",
        email=row.get("email") or "",
    )

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Actor:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = credentials.credentials
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    # The token's role claim is only a hint; the stored role wins.
    user = await users_db.get_user_by_id(str(user_id))
    if not user or not user["is_active"]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive or missing user")
    return actor_from_row(user)

def require_roles(roles: List[Role]):
    invalid = [r for r in roles if not isinstance(r, Role)]
    if invalid:
        raise ValueError(f"Invalid roles: {invalid}")

    async def _dep(user: Actor = Depends(get_current_user)):
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user
    return _dep

def get_policy(request: Request) -> PermissionPolicy:
    policy = getattr(request.app.state, "policy", None)
    if policy is None:
        policy = request.app.state.policy = build_policy()
    return policy

def get_authorizer(
    user: Actor = Depends(get_current_user),
    policy: PermissionPolicy = Depends(get_policy),
) -> Authorizer:
    return Authorizer(user, policy)

def get_stats_bus(request: Request) -> StatsInvalidationBus:
    bus = getattr(request.app.state, "stats_bus", None)
    if bus is None:
        bus = request.app.state.stats_bus = StatsInvalidationBus()
    return bus
